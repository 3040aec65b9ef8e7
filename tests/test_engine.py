"""Tests for AuthorizationEngine."""

from __future__ import annotations

import asyncio
import itertools
import threading

import pytest

from aclgraph import (
    AclConfig,
    AuthorizationEngine,
    BackendError,
    CypherGraphStore,
    Decision,
    EngineConfig,
    GroupMembership,
    IdentifierConfig,
    Invocation,
    MemoryGraphStore,
    NodeRef,
)


def make_engine(config: EngineConfig | None = None, store: MemoryGraphStore | None = None) -> AuthorizationEngine:
    ticks = itertools.count(1)
    return AuthorizationEngine(store or MemoryGraphStore(), config, clock=lambda: float(next(ticks)))


async def editors_staff_doc1(engine: AuthorizationEngine) -> None:
    """u1 -> editors -> staff, staff may read doc1."""
    await engine.add_membership("u1", "editors")
    await engine.add_group_parents("editors", "staff")
    await engine.grant("staff", "doc1", "read")


class FailingStore(MemoryGraphStore):
    """Memory store whose traversal reads fail."""

    async def memberships_from(self, source):
        raise BackendError("store unavailable")


class TestScenario:
    """The principal -> group -> parent -> resource chain."""

    @pytest.mark.asyncio
    async def test_inherited_permission(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)

        decision = await engine.has_all_permissions("u1", ["doc1"], ["read"])
        assert decision.allowed
        assert await engine.permissions_for("u1", ["doc1"]) == {"doc1": ["read"]}

        await engine.remove_membership("u1", "editors")

        decision = await engine.has_all_permissions("u1", ["doc1"], ["read"])
        assert not decision.allowed
        assert decision.denied
        assert await engine.permissions_for("u1", ["doc1"]) == {}

    @pytest.mark.asyncio
    async def test_operations_return_invocations(self) -> None:
        engine = make_engine()
        invocation = engine.grant("staff", "doc1", ["read"])
        assert isinstance(invocation, Invocation)
        assert invocation.parameters == {"groups": "staff", "resources": "doc1", "permissions": ["read"]}
        await invocation

    def test_sync_callers(self) -> None:
        engine = make_engine()
        engine.add_membership("u1", "editors").run_sync()
        engine.grant("editors", "doc1", ["read"]).run_sync()

        assert engine.has_all_permissions("u1", "doc1", "read").run_sync().allowed


class TestMembership:
    """Membership operations."""

    @pytest.mark.asyncio
    async def test_groups_of(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)

        assert await engine.groups_of("u1") == [
            GroupMembership(name="editors", distance=1, since=1.0),
            GroupMembership(name="staff", distance=2, since=2.0),
        ]

    @pytest.mark.asyncio
    async def test_groups_of_sorted_by_distance_then_name(self) -> None:
        engine = make_engine()
        await engine.add_membership("u1", ["zeta", "alpha"])
        await engine.add_group_parents("alpha", "beta")

        names = [m.name for m in await engine.groups_of("u1")]
        assert names == ["alpha", "zeta", "beta"]

    @pytest.mark.asyncio
    async def test_repeat_membership_keeps_since(self) -> None:
        engine = make_engine()
        await engine.add_membership("u1", "editors")
        await engine.add_membership("u1", ["editors", "editors"])

        [membership] = await engine.groups_of("u1")
        assert membership.since == 1.0

    @pytest.mark.asyncio
    async def test_integer_principal_ids(self) -> None:
        engine = make_engine()
        await engine.add_membership(7, "editors")
        assert [m.name for m in await engine.groups_of("7")] == ["editors"]

    @pytest.mark.asyncio
    async def test_is_member_of(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)

        assert (await engine.is_member_of_all("u1", ["editors", "staff"])).allowed
        assert not (await engine.is_member_of_all("u1", ["editors", "admins"])).allowed
        assert (await engine.is_member_of_any("u1", ["admins", "staff"])).allowed
        assert not (await engine.is_member_of_any("u1", ["admins"])).allowed

    @pytest.mark.asyncio
    async def test_empty_group_sets(self) -> None:
        engine = make_engine()
        await engine.add_membership("u1", "editors")

        assert (await engine.is_member_of_all("u1", [])).allowed
        assert not (await engine.is_member_of_any("u1", [])).allowed

    @pytest.mark.asyncio
    async def test_invalid_inputs(self) -> None:
        engine = make_engine()
        await engine.add_membership(None, "editors")
        await engine.add_membership("u1", ["", None])

        assert not engine.store.has_node(NodeRef.group("editors"))
        assert await engine.groups_of("u1") == []
        assert await engine.groups_of(None) == []
        decision = await engine.is_member_of_all(None, ["editors"])
        assert decision.denied

    @pytest.mark.asyncio
    async def test_members_of(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.add_membership("u2", "staff")

        assert await engine.members_of("staff") == ["u1", "u2"]
        assert await engine.members_of("editors") == ["u1"]


class TestHierarchy:
    """Group parent operations."""

    @pytest.mark.asyncio
    async def test_parents_of(self) -> None:
        engine = make_engine()
        await engine.add_group_parents("editors", ["staff", "writers"])
        await engine.add_group_parents("staff", "everyone")

        parents = await engine.parents_of("editors")
        assert [(p.name, p.distance) for p in parents] == [("staff", 1), ("writers", 1), ("everyone", 2)]

    @pytest.mark.asyncio
    async def test_parents_of_include_self(self) -> None:
        engine = make_engine(EngineConfig(membership_include_self=True))
        await engine.add_group_parents("editors", "staff")

        parents = await engine.parents_of("editors")
        assert [(p.name, p.distance) for p in parents] == [("editors", 0), ("staff", 1)]

    @pytest.mark.asyncio
    async def test_remove_group_parents(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.remove_group_parents("editors", "staff")

        assert await engine.parents_of("editors") == []
        assert not (await engine.has_all_permissions("u1", "doc1", "read")).allowed

    @pytest.mark.asyncio
    async def test_remove_group_cascades(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.remove_group("staff")

        assert [m.name for m in await engine.groups_of("u1")] == ["editors"]
        assert await engine.permissions_for("u1", "doc1") == {}

    @pytest.mark.asyncio
    async def test_remove_resource_cascades(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.grant("staff", "doc2", "read")
        await engine.remove_resource("doc1")

        assert await engine.permitted_resources("u1") == {"doc2": ["read"]}


class TestPermissions:
    """Grant and permission queries."""

    @pytest.mark.asyncio
    async def test_union_across_groups(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.grant("editors", "doc1", "write")

        assert await engine.permissions_for("u1", ["doc1", "doc2"]) == {"doc1": ["read", "write"]}
        assert (await engine.has_all_permissions("u1", "doc1", ["read", "write"])).allowed
        assert not (await engine.has_all_permissions("u1", "doc1", ["read", "delete"])).allowed

    @pytest.mark.asyncio
    async def test_has_all_requires_every_resource(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)

        assert not (await engine.has_all_permissions("u1", ["doc1", "doc2"], "read")).allowed
        assert (await engine.has_all_permissions("u1", [], "read")).allowed

    @pytest.mark.asyncio
    async def test_has_any_permissions(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.grant("editors", "doc2", "write")

        assert (await engine.has_any_permissions("u1", "doc1", ["read", "delete"])).allowed
        assert (await engine.has_any_permissions("u1", ["doc1", "doc2"], ["read", "write"])).allowed
        assert not (await engine.has_any_permissions("u1", ["doc1", "doc2"], ["read"])).allowed

    @pytest.mark.asyncio
    async def test_revoke(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.grant("staff", "doc1", ["write"])
        await engine.revoke("staff", "doc1", ["read"])

        assert await engine.permissions_for("u1", "doc1") == {"doc1": ["write"]}

    @pytest.mark.asyncio
    async def test_permitted_resources(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.grant("editors", ["doc2", "doc3"], "write")
        await engine.revoke("editors", "doc3", "write")

        assert await engine.permitted_resources("u1") == {"doc1": ["read"], "doc2": ["write"]}
        assert await engine.permitted_resources("nobody") == {}

    @pytest.mark.asyncio
    async def test_groups_permitted_resources_direct_only(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.grant("staff", "doc2", ["read", "write"])

        assert await engine.groups_permitted_resources("editors") == {}
        assert await engine.groups_permitted_resources("staff") == {
            "doc1": ["read"],
            "doc2": ["read", "write"],
        }
        assert await engine.groups_permitted_resources("staff", "write") == {"doc2": ["read", "write"]}

    @pytest.mark.asyncio
    async def test_any_group_has_permissions(self) -> None:
        engine = make_engine()
        await editors_staff_doc1(engine)
        await engine.grant("admins", "doc1", ["read", "write"])

        assert (await engine.any_group_has_permissions(["editors"], "doc1", "read")).allowed
        assert (await engine.any_group_has_permissions(["editors", "admins"], "doc1", ["read", "write"])).allowed
        assert not (await engine.any_group_has_permissions("editors", "doc1", ["read", "write"])).allowed
        assert not (await engine.any_group_has_permissions([], "doc1", "read")).allowed

    @pytest.mark.asyncio
    async def test_any_group_without_self(self) -> None:
        engine = make_engine(EngineConfig(group_permissions_include_self=False))
        await editors_staff_doc1(engine)
        await engine.grant("editors", "doc1", "write")

        assert (await engine.any_group_has_permissions("editors", "doc1", "read")).allowed
        assert not (await engine.any_group_has_permissions("editors", "doc1", "write")).allowed

    @pytest.mark.asyncio
    async def test_empty_permission_sets_are_denied(self) -> None:
        """A check with no permission left after normalization never passes."""
        engine = make_engine()
        await editors_staff_doc1(engine)

        for permissions in (None, [""], [], "", [None, 3.5]):
            assert not (await engine.has_all_permissions("stranger", "secret", permissions)).allowed
            assert not (await engine.has_all_permissions("u1", "doc1", permissions)).allowed
            assert not (await engine.has_any_permissions("u1", "doc1", permissions)).allowed
            assert not (await engine.any_group_has_permissions("nogroup", "secret", permissions)).allowed
            assert not (await engine.any_group_has_permissions("staff", "doc1", permissions)).allowed

    @pytest.mark.asyncio
    async def test_integer_resource_ids(self) -> None:
        engine = make_engine()
        await engine.add_membership("u1", "staff")
        await engine.grant("staff", [5, "6"], "read")

        assert await engine.permissions_for("u1", [5, 6]) == {"5": ["read"], "6": ["read"]}
        assert (await engine.has_all_permissions("u1", 5, "read")).allowed


class TestConcurrency:
    """Concurrent grants on one edge."""

    @pytest.mark.asyncio
    async def test_gathered_grants(self) -> None:
        engine = make_engine()
        await asyncio.gather(engine.grant("g", "r", ["a"]), engine.grant("g", "r", ["b"]))

        assert await engine.groups_permitted_resources("g") == {"r": ["a", "b"]}

    def test_threaded_grants(self) -> None:
        engine = make_engine()
        threads = [
            threading.Thread(target=lambda p=p: engine.grant("g", "r", [p]).run_sync())
            for p in ("a", "b", "c", "d")
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert engine.groups_permitted_resources("g").run_sync() == {"r": ["a", "b", "c", "d"]}

    @pytest.mark.asyncio
    async def test_lookups_of_unknown_ids_keep_lock_table_bounded(self) -> None:
        store = MemoryGraphStore()
        engine = make_engine(store=store)
        for i in range(1000):
            await engine.has_all_permissions(f"ghost{i}", "secret", "read")
            await engine.members_of(f"nogroup{i}")

        await engine.add_membership("u1", "g1")
        await engine.remove_group("g1")

        assert set(store._locks) == {NodeRef.principal("u1")}


class TestBackendFailures:
    """Checks fail closed and report the error; other operations raise."""

    @pytest.mark.asyncio
    async def test_check_returns_undetermined_decision(self) -> None:
        engine = make_engine(store=FailingStore())

        decision = await engine.has_all_permissions("u1", "doc1", "read")

        assert isinstance(decision, Decision)
        assert not decision
        assert decision.undetermined
        assert not decision.denied
        assert isinstance(decision.error, BackendError)

    @pytest.mark.asyncio
    async def test_membership_check_returns_undetermined_decision(self) -> None:
        engine = make_engine(store=FailingStore())
        assert (await engine.is_member_of_any("u1", "editors")).undetermined

    @pytest.mark.asyncio
    async def test_reads_raise(self) -> None:
        engine = make_engine(store=FailingStore())
        with pytest.raises(BackendError, match="store unavailable"):
            await engine.permissions_for("u1", "doc1")


class TestFromConfig:
    """Engine construction from AclConfig."""

    def test_memory_store_by_default(self) -> None:
        config = AclConfig(engine=EngineConfig(max_depth=4, drop_empty_grants=True))
        engine = AuthorizationEngine.from_config(config)

        assert isinstance(engine.store, MemoryGraphStore)
        assert engine.store.drop_empty_grants is True
        assert engine.config.max_depth == 4

    def test_cypher_store_with_executor(self) -> None:
        class NullExecutor:
            async def execute(self, query, parameters):
                return []

        config = AclConfig(identifiers=IdentifierConfig(group_label="Team"))
        engine = AuthorizationEngine.from_config(config, NullExecutor())

        assert isinstance(engine.store, CypherGraphStore)
        assert ":Team" in engine.store.query("upsert_grant")
