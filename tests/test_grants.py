"""Tests for GrantStore and union_by_resource."""

from __future__ import annotations

import pytest

from aclgraph import GrantEdge, MemoryGraphStore
from aclgraph.grants import GrantStore, union_by_resource


class TestUnionByResource:
    """The read-side aggregation rule."""

    def test_union_not_intersection(self) -> None:
        edges = [
            GrantEdge(group="a", resource="doc1", permissions=("read",)),
            GrantEdge(group="b", resource="doc1", permissions=("write", "read")),
        ]
        assert union_by_resource(edges) == {"doc1": ["read", "write"]}

    def test_empty_sets_omitted(self) -> None:
        edges = [GrantEdge(group="a", resource="doc1", permissions=())]
        assert union_by_resource(edges) == {}

    def test_required_superset_filter(self) -> None:
        edges = [
            GrantEdge(group="a", resource="doc1", permissions=("read",)),
            GrantEdge(group="b", resource="doc1", permissions=("write",)),
            GrantEdge(group="a", resource="doc2", permissions=("read",)),
        ]
        assert union_by_resource(edges, ["read", "write"]) == {"doc1": ["read", "write"]}
        assert union_by_resource(edges, []) == {"doc1": ["read", "write"], "doc2": ["read"]}


class TestGrantStore:
    """Grant mutations and queries over a memory store."""

    @pytest.fixture
    def grants(self) -> GrantStore:
        return GrantStore(MemoryGraphStore())

    @pytest.mark.asyncio
    async def test_grant_cross_product(self, grants: GrantStore) -> None:
        await grants.grant(["a", "b"], ["doc1", "doc2"], ["read"])

        assert await grants.permissions_of(["a"], ["doc1", "doc2"]) == {"doc1": ["read"], "doc2": ["read"]}
        assert await grants.permissions_of(["b"], ["doc2"]) == {"doc2": ["read"]}

    @pytest.mark.asyncio
    async def test_grant_is_idempotent(self, grants: GrantStore) -> None:
        await grants.grant(["a"], ["doc1"], ["read", "write"])
        await grants.grant(["a"], ["doc1"], ["read"])

        assert await grants.permissions_of(["a"], ["doc1"]) == {"doc1": ["read", "write"]}

    @pytest.mark.asyncio
    async def test_revoke(self, grants: GrantStore) -> None:
        await grants.grant(["a"], ["doc1"], ["read", "write"])
        await grants.revoke(["a"], ["doc1"], ["write", "never-granted"])

        assert await grants.permissions_of(["a"], ["doc1"]) == {"doc1": ["read"]}

    @pytest.mark.asyncio
    async def test_revoke_everything_omits_resource(self, grants: GrantStore) -> None:
        await grants.grant(["a"], ["doc1"], ["read"])
        await grants.revoke(["a"], ["doc1"], ["read"])

        assert await grants.permissions_of(["a"], ["doc1"]) == {}
        assert await grants.all_permissions_of(["a"]) == {}

    @pytest.mark.asyncio
    async def test_empty_permissions_create_nothing(self, grants: GrantStore) -> None:
        await grants.grant(["a"], ["doc1"], [])
        assert await grants._store.grants_from(["a"]) == []

    @pytest.mark.asyncio
    async def test_empty_inputs_read_empty(self, grants: GrantStore) -> None:
        await grants.grant(["a"], ["doc1"], ["read"])

        assert await grants.permissions_of([], ["doc1"]) == {}
        assert await grants.permissions_of(["a"], []) == {}
        assert await grants.all_permissions_of([]) == {}

    @pytest.mark.asyncio
    async def test_all_permissions_with_required(self, grants: GrantStore) -> None:
        await grants.grant(["a"], ["doc1"], ["read", "write"])
        await grants.grant(["a"], ["doc2"], ["read"])

        assert await grants.all_permissions_of(["a"], ["write"]) == {"doc1": ["read", "write"]}
