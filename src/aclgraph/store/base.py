"""GraphStore interface — the only component touching persistent state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Collection, Sequence
from typing import Optional

from ..models import GrantEdge, MembershipEdge, NodeRef


class GraphStore(ABC):
    """Transactional store of principals, groups, resources and their edges.

    Every method is one atomic unit of work. Mutations are upserts or
    idempotent deletes: repeating one is a successful no-op, and referencing
    a missing node or edge is never an error. Reads are snapshots.
    """

    # ── Mutations ──────────────────────────────────────

    @abstractmethod
    async def upsert_membership(self, source: NodeRef, group: str, now: float) -> None:
        """Merge ``source -> group``; ``since`` is set to ``now`` only on creation."""

    @abstractmethod
    async def remove_membership(self, source: NodeRef, groups: Collection[str]) -> None:
        """Delete every membership edge from ``source`` to a group in ``groups``."""

    @abstractmethod
    async def remove_group(self, name: str) -> None:
        """Delete a group and every membership/grant edge touching it."""

    @abstractmethod
    async def remove_resource(self, resource_id: str) -> None:
        """Delete a resource and every grant edge pointing at it."""

    @abstractmethod
    async def remove_principal(self, principal_id: str) -> None:
        """Delete a principal and its membership edges."""

    @abstractmethod
    async def upsert_grant(self, group: str, resource: str, permissions: Sequence[str]) -> None:
        """Merge ``group -> resource`` and union ``permissions`` into its set."""

    @abstractmethod
    async def revoke_grant(self, group: str, resource: str, permissions: Collection[str]) -> None:
        """Remove ``permissions`` from the edge's set; no edge is a no-op."""

    # ── Reads ──────────────────────────────────────────

    @abstractmethod
    async def memberships_from(self, source: NodeRef) -> list[MembershipEdge]:
        """Outgoing membership edges of ``source``."""

    @abstractmethod
    async def members_of(self, group: str) -> list[MembershipEdge]:
        """Incoming membership edges of ``group`` (principals and sub-groups)."""

    @abstractmethod
    async def grants_from(
        self,
        groups: Collection[str],
        resources: Optional[Collection[str]] = None,
    ) -> list[GrantEdge]:
        """Grant edges from ``groups``, restricted to ``resources`` unless None."""


__all__ = ["GraphStore"]
