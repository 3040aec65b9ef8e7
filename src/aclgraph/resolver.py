"""Membership resolution over the group hierarchy.

Provides:
- ``MembershipResolver.resolve()`` — groups reachable from a principal or
  group, with per-group distance and establishment time.
- ``MembershipResolver.principals_in()`` — principals belonging to a group
  directly or through any sub-group.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional

from .config import EngineConfig
from .models import NodeKind, NodeRef, Reachability
from .store.base import GraphStore

logger = logging.getLogger(__name__)


class MembershipResolver:
    """Breadth-first transitive closure of membership edges.

    For every reachable group two aggregates are tracked independently:

    - ``distance`` — fewest hops over all paths.
    - ``since`` — for each path take its latest edge timestamp (when the
      chain was completed), then the earliest of those over all paths.

    The two may come from different paths. A group is expanded again only
    when one of its aggregates strictly improves, which accounts for every
    path and stops on cycles (going round a cycle never improves either).
    ``max_depth`` and ``max_visits`` bound the work on pathological graphs.
    """

    def __init__(self, store: GraphStore, config: EngineConfig | None = None) -> None:
        self._store = store
        self._config = config or EngineConfig()

    async def resolve(self, source: NodeRef, *, include_self: bool = False) -> dict[str, Reachability]:
        """Groups reachable from ``source``.

        Args:
            source: Principal or group to start from.
            include_self: Report a group source at distance 0 (zero-or-more
                hops instead of one-or-more).

        Returns:
            Mapping of group name to its ``Reachability``.
        """
        max_depth = self._config.max_depth
        max_visits = self._config.max_visits

        distance: dict[str, int] = {}
        since: dict[str, float] = {}
        queue: deque[str] = deque()
        queued: set[str] = set()
        visits = 0

        def relax(group: str, hops: int, path_since: float) -> None:
            improved = False
            if group not in distance or hops < distance[group]:
                distance[group] = hops
                improved = True
            if group not in since or path_since < since[group]:
                since[group] = path_since
                improved = True
            if improved and group not in queued:
                queued.add(group)
                queue.append(group)

        for edge in await self._store.memberships_from(source):
            visits += 1
            relax(edge.group, 1, edge.since)

        truncated = False
        while queue:
            group = queue.popleft()
            queued.discard(group)
            hops, path_since = distance[group], since[group]
            edges = await self._store.memberships_from(NodeRef.group(group))
            if hops >= max_depth:
                truncated = truncated or bool(edges)
                continue
            for edge in edges:
                visits += 1
                if visits > max_visits:
                    truncated = True
                    queue.clear()
                    break
                relax(edge.group, hops + 1, max(path_since, edge.since))

        if truncated:
            logger.warning(
                "Membership traversal from %s hit its bounds (max_depth=%d, max_visits=%d); result may be partial",
                source,
                max_depth,
                max_visits,
            )

        result = {name: Reachability(distance=distance[name], since=since[name]) for name in distance}
        if include_self and source.kind is NodeKind.GROUP:
            looped: Optional[float] = since.get(source.id)
            result[source.id] = Reachability(distance=0, since=looped)
        return result

    async def principals_in(self, group: str) -> list[str]:
        """Distinct principal ids belonging to ``group`` at any depth, sorted."""
        principals: set[str] = set()
        visited: set[str] = {group}
        queue: deque[tuple[str, int]] = deque([(group, 0)])

        while queue:
            name, depth = queue.popleft()
            if depth >= self._config.max_depth:
                logger.warning("Member traversal of %s stopped at max_depth=%d", group, self._config.max_depth)
                continue
            for edge in await self._store.members_of(name):
                if edge.source.kind is NodeKind.PRINCIPAL:
                    principals.add(edge.source.id)
                elif edge.source.id not in visited:
                    visited.add(edge.source.id)
                    queue.append((edge.source.id, depth + 1))

        return sorted(principals)


__all__ = ["MembershipResolver"]
