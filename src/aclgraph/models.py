"""Core data models for aclgraph.

Nodes and edges are Pydantic models. Edges are frozen values: a store
replaces an edge as a whole, so a reader holding one never sees it change.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class NodeKind(str, Enum):
    """Kinds of nodes in the authorization graph."""

    PRINCIPAL = "principal"
    GROUP = "group"
    RESOURCE = "resource"


class NodeRef(BaseModel):
    """Reference to a node: its kind plus its id (or name, for groups)."""

    model_config = {"frozen": True}

    kind: NodeKind
    id: str = Field(min_length=1)

    @classmethod
    def principal(cls, principal_id: str) -> NodeRef:
        return cls(kind=NodeKind.PRINCIPAL, id=principal_id)

    @classmethod
    def group(cls, name: str) -> NodeRef:
        return cls(kind=NodeKind.GROUP, id=name)

    @classmethod
    def resource(cls, resource_id: str) -> NodeRef:
        return cls(kind=NodeKind.RESOURCE, id=resource_id)

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.kind.value, self.id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class MembershipEdge(BaseModel):
    """``source`` belongs to ``group`` since ``since`` (epoch seconds)."""

    model_config = {"frozen": True}

    source: NodeRef
    group: str
    since: float


class GrantEdge(BaseModel):
    """``group`` holds ``permissions`` on ``resource``.

    Permissions are kept in insertion order and never contain duplicates.
    """

    model_config = {"frozen": True}

    group: str
    resource: str
    permissions: tuple[str, ...] = ()


class Reachability(BaseModel):
    """Aggregates for one group reached by a membership traversal.

    ``distance`` is the shortest hop count. ``since`` is, over every path,
    the latest membership timestamp along that path, minimized across paths.
    It is ``None`` only for the zero-hop self entry.
    """

    model_config = {"frozen": True}

    distance: int
    since: Optional[float] = None


class GroupMembership(BaseModel):
    """One group a principal (or group) belongs to."""

    name: str
    distance: int
    since: Optional[float] = None


@dataclass
class Decision:
    """Result of a boolean authorization check.

    ``allowed`` is False both when access is denied and when the check could
    not be completed; ``error`` tells the two apart.
    """

    allowed: bool = False
    error: Optional[Exception] = None

    @property
    def denied(self) -> bool:
        return not self.allowed and self.error is None

    @property
    def undetermined(self) -> bool:
        return self.error is not None

    def __bool__(self) -> bool:
        return self.allowed


__all__ = [
    "Decision",
    "GrantEdge",
    "GroupMembership",
    "MembershipEdge",
    "NodeKind",
    "NodeRef",
    "Reachability",
]
