"""Configuration contract for the aclgraph authorization engine.

This module provides Pydantic-validated configuration models:

- ``IdentifierConfig`` — labels and property names used by graph-backed
  stores (the identifier substitution layer).
- ``EngineConfig`` — traversal bounds and the self-inclusion / empty-grant
  policies of the engine.
- ``AclConfig`` — top-level settings (logging + the two models above).

Configuration is always passed explicitly to the objects that consume it.
Direct os.environ/os.getenv usage is FORBIDDEN outside
``load_config_from_env()``.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from .exceptions import ConfigurationError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_TRUTHY = ("true", "1", "yes", "on")

# Written and removed by the Cypher store while it merges a grant edge.
_RESERVED_IDENTIFIERS = frozenset({"_lock"})


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class IdentifierConfig(BaseModel):
    """Labels and property names of the backing graph schema.

    Query templates are written with canonical identifiers; a store
    replaces them with these values once, at construction time.

    Environment variables:
        ACL_PRINCIPAL_LABEL, ACL_PRINCIPAL_ID_KEY,
        ACL_GROUP_LABEL, ACL_GROUP_NAME_KEY,
        ACL_RESOURCE_LABEL, ACL_RESOURCE_ID_KEY,
        ACL_MEMBERSHIP_TYPE, ACL_MEMBERSHIP_SINCE_KEY,
        ACL_GRANT_TYPE, ACL_GRANT_PERMISSIONS_KEY
    """

    model_config = {"frozen": True, "extra": "forbid"}

    principal_label: str = Field(default="User", description="Node label of principals")
    principal_id_key: str = Field(default="_id", description="Principal id property")
    group_label: str = Field(default="Usergroup", description="Node label of groups")
    group_name_key: str = Field(default="name", description="Group name property")
    resource_label: str = Field(default="Resource", description="Node label of resources")
    resource_id_key: str = Field(default="_id", description="Resource id property")
    membership_type: str = Field(default="BELONGS_TO", description="Membership relationship type")
    membership_since_key: str = Field(default="since", description="Membership creation time property")
    grant_type: str = Field(default="HAS_PERMISSION", description="Grant relationship type")
    grant_permissions_key: str = Field(default="list", description="Grant permission list property")

    @field_validator("*")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Only plain identifiers may be spliced into query text."""
        if not isinstance(v, str) or not _IDENTIFIER_RE.match(v):
            raise ValueError(f"Invalid identifier: {v!r}. Must match {_IDENTIFIER_RE.pattern}")
        if v in _RESERVED_IDENTIFIERS:
            raise ValueError(f"Invalid identifier: {v!r} is reserved")
        return v


class EngineConfig(BaseModel):
    """Traversal bounds and policies of the authorization engine."""

    model_config = {"extra": "forbid"}

    max_depth: int = Field(
        default=32,
        ge=1,
        description="Maximum membership hops followed from a source",
    )
    max_visits: int = Field(
        default=100_000,
        ge=1,
        description="Maximum edge relaxations per traversal",
    )
    membership_include_self: bool = Field(
        default=False,
        description="Report a group as its own ancestor (distance 0) in parents_of()",
    )
    group_permissions_include_self: bool = Field(
        default=True,
        description="Count a group's own grants in group-based permission checks",
    )
    drop_empty_grants: bool = Field(
        default=False,
        description="Delete a grant edge once revoke() empties its permission set",
    )


class AclConfig(BaseModel):
    """Top-level configuration of an aclgraph deployment."""

    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )
    identifiers: IdentifierConfig = Field(
        default_factory=IdentifierConfig,
        description="Graph schema identifiers",
    )
    engine: EngineConfig = Field(
        default_factory=EngineConfig,
        description="Engine traversal bounds and policies",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",
    }


def _env_flag(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    return raw.lower() in _TRUTHY


def load_config_from_env() -> AclConfig:
    """Load configuration from environment variables.

    This is the ONLY place where os.getenv is allowed.

    Environment variables:
    - ACL_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ACL_LOG_JSON: Use JSON log format (true/false, default: false)
    - ACL_MAX_DEPTH: Maximum membership hops
    - ACL_MAX_VISITS: Maximum edge relaxations per traversal
    - ACL_MEMBERSHIP_INCLUDE_SELF: Self-inclusion for parents_of()
    - ACL_GROUP_PERMISSIONS_INCLUDE_SELF: Self-inclusion for group permission checks
    - ACL_DROP_EMPTY_GRANTS: Delete grant edges emptied by revoke()
    - ACL_<FIELD>: any IdentifierConfig field in upper case

    Returns:
        AclConfig instance with values from environment or defaults.

    Raises:
        ConfigurationError: if a variable holds a malformed value.
    """
    import os

    try:
        return _build_config(os.getenv)
    except ValueError as e:
        # pydantic.ValidationError is a ValueError too.
        raise ConfigurationError(f"Invalid ACL_* environment configuration: {e}") from e


def _build_config(getenv) -> AclConfig:
    defaults = EngineConfig()
    engine = EngineConfig(
        max_depth=int(getenv("ACL_MAX_DEPTH", str(defaults.max_depth))),
        max_visits=int(getenv("ACL_MAX_VISITS", str(defaults.max_visits))),
        membership_include_self=_env_flag(getenv("ACL_MEMBERSHIP_INCLUDE_SELF"), defaults.membership_include_self),
        group_permissions_include_self=_env_flag(
            getenv("ACL_GROUP_PERMISSIONS_INCLUDE_SELF"), defaults.group_permissions_include_self
        ),
        drop_empty_grants=_env_flag(getenv("ACL_DROP_EMPTY_GRANTS"), defaults.drop_empty_grants),
    )

    identifier_overrides = {}
    for name in IdentifierConfig.model_fields:
        value = getenv(f"ACL_{name.upper()}")
        if value is not None:
            identifier_overrides[name] = value

    return AclConfig(
        log_level=getenv("ACL_LOG_LEVEL", "INFO"),
        log_json=_env_flag(getenv("ACL_LOG_JSON"), False),
        identifiers=IdentifierConfig(**identifier_overrides),
        engine=engine,
    )


__all__ = [
    "AclConfig",
    "EngineConfig",
    "IdentifierConfig",
    "LogLevel",
    "load_config_from_env",
]
