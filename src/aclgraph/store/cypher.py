"""GraphStore backed by a Cypher-speaking graph database.

The database driver is not part of aclgraph: callers hand in a
``QueryExecutor`` whose ``execute(query, parameters)`` runs one query in its
own transaction and returns rows as mappings.

Query templates below use canonical identifiers::

    User / user_id              principal label / id property
    Usergroup / group_name      group label / name property
    Resource / resource_id      resource label / id property
    BELONGS_TO / belongs_since  membership type / since property
    HAS_PERMISSION / permission_list

They are rewritten once, at construction, from an ``IdentifierConfig``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Collection, Mapping, Sequence
from typing import Any, Optional, Protocol

from ..config import IdentifierConfig
from ..exceptions import AclGraphError, BackendError, ConcurrencyConflict
from ..models import GrantEdge, MembershipEdge, NodeKind, NodeRef
from .base import GraphStore

logger = logging.getLogger(__name__)


class QueryExecutor(Protocol):
    """Parameterized graph-query execution interface."""

    async def execute(self, query: str, parameters: dict[str, Any]) -> list[Mapping[str, Any]]: ...


# Canonical token -> IdentifierConfig field
_CANONICAL_IDENTIFIERS: dict[str, str] = {
    "Usergroup": "group_label",
    "User": "principal_label",
    "user_id": "principal_id_key",
    "group_name": "group_name_key",
    "Resource": "resource_label",
    "resource_id": "resource_id_key",
    "BELONGS_TO": "membership_type",
    "belongs_since": "membership_since_key",
    "HAS_PERMISSION": "grant_type",
    "permission_list": "grant_permissions_key",
}

_IDENTIFIER_PATTERN = re.compile(r"\b(" + "|".join(_CANONICAL_IDENTIFIERS) + r")\b")

_SOURCE_PATTERNS: dict[NodeKind, str] = {
    NodeKind.PRINCIPAL: "(source:User {user_id: $source})",
    NodeKind.GROUP: "(source:Usergroup {group_name: $source})",
}

# ── Query templates ─────────────────────────────────────

UPSERT_MEMBERSHIP = "\n".join(
    [
        "MERGE {source}",
        "MERGE (group:Usergroup {{group_name: $group}})",
        "MERGE (source)-[rel:BELONGS_TO]->(group)",
        "  ON CREATE SET rel.belongs_since = $now",
    ]
)

REMOVE_MEMBERSHIP = "\n".join(
    [
        "MATCH {source}-[rel:BELONGS_TO]->(group:Usergroup)",
        "WHERE group.group_name IN $groups",
        "DELETE rel",
    ]
)

REMOVE_GROUP = "MATCH (group:Usergroup {group_name: $group})\nDETACH DELETE group"

REMOVE_RESOURCE = "MATCH (resource:Resource {resource_id: $resource})\nDETACH DELETE resource"

REMOVE_PRINCIPAL = "MATCH (user:User {user_id: $principal})\nDETACH DELETE user"

# The dummy property write takes the relationship write lock before the
# permission list is read, so concurrent merges serialize on the edge.
UPSERT_GRANT = "\n".join(
    [
        "MERGE (group:Usergroup {group_name: $group})",
        "MERGE (resource:Resource {resource_id: $resource})",
        "MERGE (group)-[rel:HAS_PERMISSION]->(resource)",
        "  ON CREATE SET rel.permission_list = []",
        "SET rel._lock = true",
        "WITH rel",
        "SET rel.permission_list = rel.permission_list + [p IN $permissions WHERE NOT p IN rel.permission_list]",
        "REMOVE rel._lock",
    ]
)

REVOKE_GRANT = "\n".join(
    [
        "MATCH (group:Usergroup {group_name: $group})-[rel:HAS_PERMISSION]->(resource:Resource {resource_id: $resource})",
        "SET rel._lock = true",
        "WITH rel",
        "SET rel.permission_list = [p IN rel.permission_list WHERE NOT p IN $permissions]",
        "REMOVE rel._lock",
    ]
)

DROP_EMPTY_GRANT = "\n".join(
    [
        "WITH rel",
        "WHERE size(rel.permission_list) = 0",
        "DELETE rel",
    ]
)

MEMBERSHIPS_FROM = "\n".join(
    [
        "MATCH {source}-[rel:BELONGS_TO]->(group:Usergroup)",
        "RETURN group.group_name AS group, rel.belongs_since AS since",
    ]
)

MEMBERS_OF = "\n".join(
    [
        "MATCH (group:Usergroup {group_name: $group})<-[rel:BELONGS_TO]-(source)",
        "WHERE source:User OR source:Usergroup",
        "RETURN CASE WHEN source:User THEN 'principal' ELSE 'group' END AS kind,",
        "       CASE WHEN source:User THEN source.user_id ELSE source.group_name END AS source,",
        "       rel.belongs_since AS since",
    ]
)

GRANTS_FROM = "\n".join(
    [
        "MATCH (group:Usergroup)-[rel:HAS_PERMISSION]->(resource:Resource)",
        "WHERE group.group_name IN $groups AND ($resources IS NULL OR resource.resource_id IN $resources)",
        "RETURN group.group_name AS group, resource.resource_id AS resource, rel.permission_list AS permissions",
    ]
)


def rename_identifiers(query: str, identifiers: IdentifierConfig) -> str:
    """Replace canonical identifiers in ``query`` in a single pass."""
    return _IDENTIFIER_PATTERN.sub(lambda m: getattr(identifiers, _CANONICAL_IDENTIFIERS[m.group(1)]), query)


class CypherGraphStore(GraphStore):
    """GraphStore that renders Cypher and delegates execution.

    Args:
        executor: Runs one parameterized query atomically.
        identifiers: Schema labels/properties (defaults to ``IdentifierConfig()``).
        drop_empty_grants: Delete a grant edge once revoke empties it.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        identifiers: IdentifierConfig | None = None,
        *,
        drop_empty_grants: bool = False,
    ) -> None:
        self._executor = executor
        self.identifiers = identifiers or IdentifierConfig()
        self.drop_empty_grants = drop_empty_grants

        render = self._render
        self._queries: dict[str, str] = {
            "remove_group": render(REMOVE_GROUP),
            "remove_resource": render(REMOVE_RESOURCE),
            "remove_principal": render(REMOVE_PRINCIPAL),
            "upsert_grant": render(UPSERT_GRANT),
            "revoke_grant": render(
                REVOKE_GRANT + "\n" + DROP_EMPTY_GRANT if drop_empty_grants else REVOKE_GRANT
            ),
            "members_of": render(MEMBERS_OF),
            "grants_from": render(GRANTS_FROM),
        }
        for kind, pattern in _SOURCE_PATTERNS.items():
            self._queries[f"upsert_membership:{kind.value}"] = render(UPSERT_MEMBERSHIP.format(source=pattern))
            self._queries[f"remove_membership:{kind.value}"] = render(REMOVE_MEMBERSHIP.format(source=pattern))
            self._queries[f"memberships_from:{kind.value}"] = render(MEMBERSHIPS_FROM.format(source=pattern))

    def _render(self, template: str) -> str:
        return rename_identifiers(template, self.identifiers)

    def query(self, name: str) -> str:
        """Rendered query text registered under ``name``."""
        return self._queries[name]

    async def _execute(self, name: str, parameters: dict[str, Any]) -> list[Mapping[str, Any]]:
        try:
            return list(await self._executor.execute(self._queries[name], parameters))
        except AclGraphError:
            raise
        except Exception as e:
            logger.error("%s failed: %s", name, e)
            raise BackendError(f"{name} failed: {e}", query=name) from e

    async def _run(self, name: str, parameters: dict[str, Any]) -> list[Mapping[str, Any]]:
        """Execute a registered query, retrying once on a concurrency conflict."""
        try:
            return await self._execute(name, parameters)
        except ConcurrencyConflict as e:
            logger.warning("%s hit a concurrent modification, retrying once: %s", name, e)

        try:
            return await self._execute(name, parameters)
        except ConcurrencyConflict as e:
            raise BackendError(f"{name} failed after retry: {e.message}", query=name) from e

    def _source_query(self, operation: str, source: NodeRef) -> str:
        if source.kind not in _SOURCE_PATTERNS:
            raise ValueError(f"{source.kind.value} nodes cannot hold memberships")
        return f"{operation}:{source.kind.value}"

    # ── Mutations ──────────────────────────────────────

    async def upsert_membership(self, source: NodeRef, group: str, now: float) -> None:
        await self._run(
            self._source_query("upsert_membership", source),
            {"source": source.id, "group": group, "now": now},
        )

    async def remove_membership(self, source: NodeRef, groups: Collection[str]) -> None:
        if not groups:
            return
        await self._run(
            self._source_query("remove_membership", source),
            {"source": source.id, "groups": list(groups)},
        )

    async def remove_group(self, name: str) -> None:
        await self._run("remove_group", {"group": name})

    async def remove_resource(self, resource_id: str) -> None:
        await self._run("remove_resource", {"resource": resource_id})

    async def remove_principal(self, principal_id: str) -> None:
        await self._run("remove_principal", {"principal": principal_id})

    async def upsert_grant(self, group: str, resource: str, permissions: Sequence[str]) -> None:
        await self._run(
            "upsert_grant",
            {"group": group, "resource": resource, "permissions": list(permissions)},
        )

    async def revoke_grant(self, group: str, resource: str, permissions: Collection[str]) -> None:
        await self._run(
            "revoke_grant",
            {"group": group, "resource": resource, "permissions": list(permissions)},
        )

    # ── Reads ──────────────────────────────────────────

    async def memberships_from(self, source: NodeRef) -> list[MembershipEdge]:
        rows = await self._run(self._source_query("memberships_from", source), {"source": source.id})
        return [
            MembershipEdge(source=source, group=row["group"], since=_since(row, "memberships_from"))
            for row in rows
        ]

    async def members_of(self, group: str) -> list[MembershipEdge]:
        rows = await self._run("members_of", {"group": group})
        return [
            MembershipEdge(
                source=NodeRef(kind=NodeKind(row["kind"]), id=str(row["source"])),
                group=group,
                since=_since(row, "members_of"),
            )
            for row in rows
        ]

    async def grants_from(
        self,
        groups: Collection[str],
        resources: Optional[Collection[str]] = None,
    ) -> list[GrantEdge]:
        if not groups:
            return []
        rows = await self._run(
            "grants_from",
            {"groups": list(groups), "resources": None if resources is None else list(resources)},
        )
        edges = []
        for row in rows:
            permissions = tuple(dict.fromkeys(p for p in row["permissions"] or () if isinstance(p, str)))
            edges.append(GrantEdge(group=row["group"], resource=str(row["resource"]), permissions=permissions))
        return edges


def _since(row: Mapping[str, Any], query: str) -> float:
    # Every membership edge is created with a timestamp.
    since = row["since"]
    if since is None:
        raise BackendError(f"{query} returned a membership without a since timestamp", query=query)
    return since


__all__ = [
    "CypherGraphStore",
    "QueryExecutor",
    "rename_identifiers",
]
