"""Permission-set algebra on grant edges.

- Adding is a monotonic union; adding a present permission is a no-op.
- Revoking is a set difference; revoking an absent permission is a no-op.
- Reading unions the sets of every matching group, never intersects them.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from typing import Optional

from .models import GrantEdge
from .store.base import GraphStore

logger = logging.getLogger(__name__)


def union_by_resource(
    edges: Iterable[GrantEdge],
    required: Optional[Collection[str]] = None,
) -> dict[str, list[str]]:
    """Union permission sets per resource.

    Resources whose union is empty are omitted. When ``required`` is given,
    only resources whose union is a superset of it are kept.

    Returns:
        Mapping of resource id to its sorted permission list.
    """
    merged: dict[str, set[str]] = {}
    for edge in edges:
        merged.setdefault(edge.resource, set()).update(edge.permissions)

    needed = set(required or ())
    return {
        resource: sorted(permissions)
        for resource, permissions in merged.items()
        if permissions and needed <= permissions
    }


class GrantStore:
    """Grant mutations and permission queries over a ``GraphStore``."""

    def __init__(self, store: GraphStore) -> None:
        self._store = store

    async def grant(
        self,
        groups: Collection[str],
        resources: Collection[str],
        permissions: Collection[str],
    ) -> None:
        """Union ``permissions`` into every (group, resource) edge."""
        if not permissions:
            return
        for group in groups:
            for resource in resources:
                await self._store.upsert_grant(group, resource, list(permissions))
        logger.debug("Granted %s on %s to %s", list(permissions), list(resources), list(groups))

    async def revoke(
        self,
        groups: Collection[str],
        resources: Collection[str],
        permissions: Collection[str],
    ) -> None:
        """Remove ``permissions`` from every (group, resource) edge."""
        if not permissions:
            return
        for group in groups:
            for resource in resources:
                await self._store.revoke_grant(group, resource, list(permissions))
        logger.debug("Revoked %s on %s from %s", list(permissions), list(resources), list(groups))

    async def permissions_of(
        self,
        groups: Collection[str],
        resources: Collection[str],
        required: Optional[Collection[str]] = None,
    ) -> dict[str, list[str]]:
        """Union of permissions ``groups`` hold on each of ``resources``."""
        if not groups or not resources:
            return {}
        edges = await self._store.grants_from(groups, resources)
        return union_by_resource(edges, required)

    async def all_permissions_of(
        self,
        groups: Collection[str],
        required: Optional[Collection[str]] = None,
    ) -> dict[str, list[str]]:
        """Union of permissions ``groups`` hold on every resource they reach."""
        if not groups:
            return {}
        edges = await self._store.grants_from(groups, None)
        return union_by_resource(edges, required)


__all__ = ["GrantStore", "union_by_resource"]
