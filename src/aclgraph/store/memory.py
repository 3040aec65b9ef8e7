"""In-process GraphStore with per-node locking.

Locking model:
- Every stored node owns a ``threading.Lock``. Removing the node retires
  its lock, and reads or deletes of unknown nodes never create one.
- A mutation locks each node whose adjacency it rewrites, always in
  ``NodeRef.sort_key`` order, so lock acquisition cannot deadlock.
- Cascading deletes lock the node plus its current neighbours and retry
  if a neighbour appeared in between.

Operations on disjoint (source, group) or (group, resource) pairs never
share a lock. Edges are frozen models replaced as a whole, so readers see
either the old or the new permission set, never a mix.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Collection, Iterator, Sequence
from contextlib import ExitStack, contextmanager
from typing import Optional

from ..models import GrantEdge, MembershipEdge, NodeKind, NodeRef
from .base import GraphStore

logger = logging.getLogger(__name__)


class MemoryGraphStore(GraphStore):
    """Dictionary-backed graph store safe for concurrent threads and tasks.

    Args:
        drop_empty_grants: Delete a grant edge once revoke empties it.
    """

    def __init__(self, *, drop_empty_grants: bool = False) -> None:
        self.drop_empty_grants = drop_empty_grants

        self._nodes: dict[NodeKind, set[str]] = {kind: set() for kind in NodeKind}
        # source -> group name -> edge
        self._memberships: dict[NodeRef, dict[str, MembershipEdge]] = {}
        # group name -> source -> edge
        self._members: dict[str, dict[NodeRef, MembershipEdge]] = {}
        # group name -> resource id -> edge
        self._grants: dict[str, dict[str, GrantEdge]] = {}
        # resource id -> group names
        self._grantees: dict[str, set[str]] = {}

        self._locks: dict[NodeRef, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ── Locking ────────────────────────────────────────

    def _lock_for(self, ref: NodeRef) -> threading.Lock:
        lock = self._locks.get(ref)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(ref, threading.Lock())
        return lock

    @contextmanager
    def _locked(self, *refs: NodeRef) -> Iterator[None]:
        ordered = sorted(set(refs), key=lambda ref: ref.sort_key)
        while True:
            with ExitStack() as stack:
                locks = [self._lock_for(ref) for ref in ordered]
                for lock in locks:
                    stack.enter_context(lock)
                # A removed node's lock is retired while held; waiters on it start over.
                if all(self._locks.get(ref) is lock for ref, lock in zip(ordered, locks)):
                    yield
                    return

    def _retire_lock(self, ref: NodeRef) -> None:
        with self._locks_guard:
            self._locks.pop(ref, None)

    # ── Internal helpers (callers hold the relevant locks) ──

    def _touch(self, ref: NodeRef) -> None:
        self._nodes[ref.kind].add(ref.id)

    def _neighbours(self, ref: NodeRef) -> set[NodeRef]:
        neighbours: set[NodeRef] = set()
        if ref.kind is not NodeKind.RESOURCE:
            neighbours.update(NodeRef.group(name) for name in tuple(self._memberships.get(ref, {})))
        if ref.kind is NodeKind.GROUP:
            neighbours.update(tuple(self._members.get(ref.id, {})))
            neighbours.update(NodeRef.resource(res) for res in tuple(self._grants.get(ref.id, {})))
        if ref.kind is NodeKind.RESOURCE:
            neighbours.update(NodeRef.group(name) for name in tuple(self._grantees.get(ref.id, ())))
        neighbours.discard(ref)
        return neighbours

    def _drop_membership(self, source: NodeRef, group: str) -> None:
        self._memberships.get(source, {}).pop(group, None)
        self._members.get(group, {}).pop(source, None)

    def _drop_grant(self, group: str, resource: str) -> None:
        self._grants.get(group, {}).pop(resource, None)
        self._grantees.get(resource, set()).discard(group)

    def _remove_node(self, ref: NodeRef) -> None:
        while True:
            neighbours = self._neighbours(ref)
            if not neighbours and not self.has_node(ref):
                return
            with self._locked(ref, *neighbours):
                if not self._neighbours(ref) <= neighbours:
                    continue

                for group in tuple(self._memberships.get(ref, {})):
                    self._drop_membership(ref, group)
                self._memberships.pop(ref, None)

                if ref.kind is NodeKind.GROUP:
                    for source in tuple(self._members.get(ref.id, {})):
                        self._drop_membership(source, ref.id)
                    for resource in tuple(self._grants.get(ref.id, {})):
                        self._drop_grant(ref.id, resource)
                    self._members.pop(ref.id, None)
                    self._grants.pop(ref.id, None)

                if ref.kind is NodeKind.RESOURCE:
                    for group in tuple(self._grantees.get(ref.id, ())):
                        self._drop_grant(group, ref.id)
                    self._grantees.pop(ref.id, None)

                self._nodes[ref.kind].discard(ref.id)
                self._retire_lock(ref)
                return

    # ── Mutations ──────────────────────────────────────

    async def upsert_membership(self, source: NodeRef, group: str, now: float) -> None:
        target = NodeRef.group(group)
        with self._locked(source, target):
            self._touch(source)
            self._touch(target)
            if group in self._memberships.get(source, {}):
                return
            edge = MembershipEdge(source=source, group=group, since=now)
            self._memberships.setdefault(source, {})[group] = edge
            self._members.setdefault(group, {})[source] = edge

    async def remove_membership(self, source: NodeRef, groups: Collection[str]) -> None:
        current = self._memberships.get(source, {})
        targets = [name for name in groups if name in current]
        if not targets:
            return
        with self._locked(source, *(NodeRef.group(name) for name in targets)):
            for group in targets:
                self._drop_membership(source, group)

    async def remove_group(self, name: str) -> None:
        self._remove_node(NodeRef.group(name))

    async def remove_resource(self, resource_id: str) -> None:
        self._remove_node(NodeRef.resource(resource_id))

    async def remove_principal(self, principal_id: str) -> None:
        self._remove_node(NodeRef.principal(principal_id))

    async def upsert_grant(self, group: str, resource: str, permissions: Sequence[str]) -> None:
        with self._locked(NodeRef.group(group), NodeRef.resource(resource)):
            self._touch(NodeRef.group(group))
            self._touch(NodeRef.resource(resource))
            current = self._grants.get(group, {}).get(resource)
            merged = list(current.permissions) if current else []
            for permission in permissions:
                if permission not in merged:
                    merged.append(permission)
            if current is not None and len(merged) == len(current.permissions):
                return
            self._grants.setdefault(group, {})[resource] = GrantEdge(
                group=group,
                resource=resource,
                permissions=tuple(merged),
            )
            self._grantees.setdefault(resource, set()).add(group)

    async def revoke_grant(self, group: str, resource: str, permissions: Collection[str]) -> None:
        if resource not in self._grants.get(group, {}):
            return
        with self._locked(NodeRef.group(group), NodeRef.resource(resource)):
            current = self._grants.get(group, {}).get(resource)
            if current is None:
                return
            remaining = tuple(p for p in current.permissions if p not in permissions)
            if not remaining and self.drop_empty_grants:
                self._drop_grant(group, resource)
                logger.debug("Dropped empty grant %s -> %s", group, resource)
                return
            if len(remaining) != len(current.permissions):
                self._grants[group][resource] = current.model_copy(update={"permissions": remaining})

    # ── Reads ──────────────────────────────────────────
    # Unknown nodes are answered without taking (and so creating) a lock.

    async def memberships_from(self, source: NodeRef) -> list[MembershipEdge]:
        if source not in self._memberships:
            return []
        with self._locked(source):
            return list(self._memberships.get(source, {}).values())

    async def members_of(self, group: str) -> list[MembershipEdge]:
        if group not in self._members:
            return []
        with self._locked(NodeRef.group(group)):
            return list(self._members.get(group, {}).values())

    async def grants_from(
        self,
        groups: Collection[str],
        resources: Optional[Collection[str]] = None,
    ) -> list[GrantEdge]:
        wanted = None if resources is None else set(resources)
        edges: list[GrantEdge] = []
        for group in sorted(set(groups)):
            if group not in self._grants:
                continue
            with self._locked(NodeRef.group(group)):
                snapshot = list(self._grants.get(group, {}).values())
            edges.extend(edge for edge in snapshot if wanted is None or edge.resource in wanted)
        return edges

    # ── Introspection ──────────────────────────────────

    def has_node(self, ref: NodeRef) -> bool:
        return ref.id in self._nodes[ref.kind]


__all__ = ["MemoryGraphStore"]
