"""Authorization engine — the public face of aclgraph.

Composes ``MembershipResolver`` (who belongs where) and ``GrantStore`` (who
may do what on which resource) over one ``GraphStore``.

Every public method returns an :class:`~aclgraph.invocation.Invocation`::

    engine = AuthorizationEngine(MemoryGraphStore())
    await engine.add_membership("u1", "editors")
    await engine.add_group_parents("editors", "staff")
    await engine.grant("staff", "doc1", "read")

    decision = await engine.has_all_permissions("u1", ["doc1"], ["read"])
    decision.allowed  # True

Arguments documented as "one or many" accept a string or a collection of
strings; they are normalized with :func:`~aclgraph.normalize.ensure_cous`
and invalid entries are dropped silently. Mutations are upserts, so
repeating one is a successful no-op. Reads about unknown nodes return empty
results.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Optional

from .config import AclConfig, EngineConfig, load_config_from_env
from .exceptions import BackendError
from .grants import GrantStore
from .invocation import operation
from .logging import get_acl_logger
from .models import Decision, GroupMembership, NodeRef
from .normalize import ensure_cous, ensure_id
from .resolver import MembershipResolver
from .store.base import GraphStore
from .store.cypher import CypherGraphStore, QueryExecutor
from .store.memory import MemoryGraphStore

logger = get_acl_logger(__name__)


class AuthorizationEngine:
    """Membership and permission decisions over a group hierarchy.

    Args:
        store: Backing graph store.
        config: Traversal bounds and policies.
        clock: Source of membership timestamps (epoch seconds).
    """

    def __init__(
        self,
        store: GraphStore,
        config: EngineConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store
        self.resolver = MembershipResolver(store, self.config)
        self.grants = GrantStore(store)
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: AclConfig | None = None,
        executor: QueryExecutor | None = None,
    ) -> AuthorizationEngine:
        """Build an engine and its store from an ``AclConfig``.

        Uses a ``CypherGraphStore`` over ``executor`` when one is given,
        otherwise an in-process ``MemoryGraphStore``.
        """
        config = config or load_config_from_env()

        drop = config.engine.drop_empty_grants
        store: GraphStore
        if executor is not None:
            store = CypherGraphStore(executor, config.identifiers, drop_empty_grants=drop)
        else:
            store = MemoryGraphStore(drop_empty_grants=drop)
        return cls(store, config.engine)

    # ── Helpers ────────────────────────────────────────

    async def _reachable_groups(self, principal_id: str) -> list[str]:
        reach = await self.resolver.resolve(NodeRef.principal(principal_id))
        return sorted(reach)

    async def _decide(self, name: str, principal: Any, check: Callable[[], Awaitable[bool]]) -> Decision:
        """Run a boolean check, turning backend failures into an undetermined denial."""
        try:
            allowed = await check()
        except BackendError as e:
            logger.error("Check failed, denying: %s", e, operation=name, principal=principal)
            return Decision(allowed=False, error=e)
        logger.debug("Decision allowed=%s", allowed, operation=name, principal=principal)
        return Decision(allowed=allowed)

    # ── Membership ─────────────────────────────────────

    @operation
    async def add_membership(self, principal: Any, groups: Any) -> None:
        """Add ``principal`` to one or many groups (created on demand)."""
        principal_id = ensure_id(principal)
        names = ensure_cous(groups)
        if principal_id is None or not names:
            return
        source = NodeRef.principal(principal_id)
        for name in names:
            await self.store.upsert_membership(source, name, self._clock())
        logger.debug("Added to %s", list(names), operation="add_membership", principal=principal_id)

    @operation
    async def remove_membership(self, principal: Any, groups: Any) -> None:
        """Remove ``principal`` from one or many groups."""
        principal_id = ensure_id(principal)
        names = ensure_cous(groups)
        if principal_id is None or not names:
            return
        await self.store.remove_membership(NodeRef.principal(principal_id), names)
        logger.debug("Removed from %s", list(names), operation="remove_membership", principal=principal_id)

    @operation
    async def groups_of(self, principal: Any) -> list[GroupMembership]:
        """Every group ``principal`` belongs to, directly or by inheritance.

        Returns:
            One entry per group, sorted by (distance, name).
        """
        principal_id = ensure_id(principal)
        if principal_id is None:
            return []
        reach = await self.resolver.resolve(NodeRef.principal(principal_id))
        return _memberships(reach)

    @operation
    async def is_member_of_all(self, principal: Any, groups: Any) -> Decision:
        """Whether ``principal`` belongs to every one of ``groups``."""
        principal_id = ensure_id(principal)
        names = set(ensure_cous(groups))
        if principal_id is None:
            return Decision(allowed=False)

        async def check() -> bool:
            reachable = set(await self._reachable_groups(principal_id))
            return len(reachable & names) == len(names)

        return await self._decide("is_member_of_all", principal_id, check)

    @operation
    async def is_member_of_any(self, principal: Any, groups: Any) -> Decision:
        """Whether ``principal`` belongs to at least one of ``groups``."""
        principal_id = ensure_id(principal)
        names = set(ensure_cous(groups))
        if principal_id is None or not names:
            return Decision(allowed=False)

        async def check() -> bool:
            reachable = set(await self._reachable_groups(principal_id))
            return bool(reachable & names)

        return await self._decide("is_member_of_any", principal_id, check)

    @operation
    async def members_of(self, group: Any) -> list[str]:
        """Principal ids belonging to ``group`` directly or through sub-groups."""
        name = ensure_id(group)
        if name is None:
            return []
        return await self.resolver.principals_in(name)

    # ── Group hierarchy ────────────────────────────────

    @operation
    async def add_group_parents(self, group: Any, parents: Any) -> None:
        """Make ``group`` a member of one or many parent groups."""
        name = ensure_id(group)
        names = ensure_cous(parents)
        if name is None or not names:
            return
        source = NodeRef.group(name)
        for parent in names:
            await self.store.upsert_membership(source, parent, self._clock())
        logger.debug("Group %s now inherits from %s", name, list(names), operation="add_group_parents")

    @operation
    async def remove_group_parents(self, group: Any, parents: Any) -> None:
        """Detach ``group`` from one or many parent groups."""
        name = ensure_id(group)
        names = ensure_cous(parents)
        if name is None or not names:
            return
        await self.store.remove_membership(NodeRef.group(name), names)

    @operation
    async def parents_of(self, group: Any) -> list[GroupMembership]:
        """Ancestors of ``group``; the group itself is listed at distance 0
        when ``membership_include_self`` is enabled."""
        name = ensure_id(group)
        if name is None:
            return []
        reach = await self.resolver.resolve(
            NodeRef.group(name),
            include_self=self.config.membership_include_self,
        )
        return _memberships(reach)

    @operation
    async def remove_group(self, group: Any) -> None:
        """Delete ``group`` with all its memberships and grants."""
        name = ensure_id(group)
        if name is None:
            return
        await self.store.remove_group(name)
        logger.debug("Removed group %s", name, operation="remove_group")

    @operation
    async def remove_resource(self, resource: Any) -> None:
        """Delete ``resource`` with all grants on it."""
        resource_id = ensure_id(resource)
        if resource_id is None:
            return
        await self.store.remove_resource(resource_id)
        logger.debug("Removed resource %s", resource_id, operation="remove_resource")

    # ── Grants ─────────────────────────────────────────

    @operation
    async def grant(self, groups: Any, resources: Any, permissions: Any) -> None:
        """Give every group every permission on every resource."""
        await self.grants.grant(ensure_cous(groups), ensure_cous(resources), ensure_cous(permissions))

    @operation
    async def revoke(self, groups: Any, resources: Any, permissions: Any) -> None:
        """Take the permissions away from every (group, resource) pair."""
        await self.grants.revoke(ensure_cous(groups), ensure_cous(resources), ensure_cous(permissions))

    # ── Permission queries ─────────────────────────────

    @operation
    async def permissions_for(self, principal: Any, resources: Any) -> dict[str, list[str]]:
        """Effective permissions of ``principal`` on each of ``resources``.

        The effective set is the union over every group the principal
        belongs to, at any depth. Resources with no permission are omitted.
        """
        principal_id = ensure_id(principal)
        resource_ids = ensure_cous(resources)
        if principal_id is None or not resource_ids:
            return {}
        groups = await self._reachable_groups(principal_id)
        return await self.grants.permissions_of(groups, resource_ids)

    @operation
    async def permitted_resources(self, principal: Any) -> dict[str, list[str]]:
        """Every resource ``principal`` holds at least one permission on."""
        principal_id = ensure_id(principal)
        if principal_id is None:
            return {}
        groups = await self._reachable_groups(principal_id)
        return await self.grants.all_permissions_of(groups)

    @operation
    async def has_all_permissions(self, principal: Any, resources: Any, permissions: Any) -> Decision:
        """Whether ``principal`` holds every permission on every resource.

        An empty permission set is denied: access always rests on a grant.
        """
        principal_id = ensure_id(principal)
        resource_ids = ensure_cous(resources)
        required = set(ensure_cous(permissions))
        if principal_id is None or not required:
            return Decision(allowed=False)

        async def check() -> bool:
            if not resource_ids:
                return True
            groups = await self._reachable_groups(principal_id)
            effective = await self.grants.permissions_of(groups, resource_ids)
            return _covers_all(effective, resource_ids, required)

        return await self._decide("has_all_permissions", principal_id, check)

    @operation
    async def has_any_permissions(self, principal: Any, resources: Any, permissions: Any) -> Decision:
        """Whether ``principal`` holds at least one of the permissions on every resource.

        An empty permission set is denied.
        """
        principal_id = ensure_id(principal)
        resource_ids = ensure_cous(resources)
        wanted = set(ensure_cous(permissions))
        if principal_id is None or not wanted:
            return Decision(allowed=False)

        async def check() -> bool:
            if not resource_ids:
                return True
            groups = await self._reachable_groups(principal_id)
            effective = await self.grants.permissions_of(groups, resource_ids)
            return all(wanted & set(effective.get(res, ())) for res in resource_ids)

        return await self._decide("has_any_permissions", principal_id, check)

    @operation
    async def any_group_has_permissions(self, groups: Any, resources: Any, permissions: Any) -> Decision:
        """Whether at least one of ``groups`` holds every permission on every resource.

        Each group is judged on the union of its inherited grants, plus its
        own when ``group_permissions_include_self`` is enabled.
        An empty permission set is denied.
        """
        names = ensure_cous(groups)
        resource_ids = ensure_cous(resources)
        required = set(ensure_cous(permissions))
        if not names or not required:
            return Decision(allowed=False)

        async def check() -> bool:
            if not resource_ids:
                return True
            for name in names:
                reach = await self.resolver.resolve(
                    NodeRef.group(name),
                    include_self=self.config.group_permissions_include_self,
                )
                if not reach:
                    continue
                effective = await self.grants.permissions_of(sorted(reach), resource_ids)
                if _covers_all(effective, resource_ids, required):
                    return True
            return False

        return await self._decide("any_group_has_permissions", None, check)

    @operation
    async def groups_permitted_resources(
        self,
        groups: Any,
        permissions: Optional[Any] = None,
    ) -> dict[str, list[str]]:
        """Resources the groups hold direct grants on, without inheritance.

        Args:
            groups: One or many group names.
            permissions: When given, keep only resources on which the
                groups' union covers all of them.
        """
        names = ensure_cous(groups)
        required = None if permissions is None else ensure_cous(permissions)
        return await self.grants.all_permissions_of(names, required)


def _covers_all(effective: dict[str, list[str]], resources, required: set[str]) -> bool:
    return all(res in effective and required <= set(effective[res]) for res in resources)


def _memberships(reach) -> list[GroupMembership]:
    entries = [
        GroupMembership(name=name, distance=item.distance, since=item.since)
        for name, item in reach.items()
    ]
    return sorted(entries, key=lambda entry: (entry.distance, entry.name))


__all__ = ["AuthorizationEngine"]
