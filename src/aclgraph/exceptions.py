"""Unified exception hierarchy for aclgraph.

All errors inherit from AclGraphError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for mapping codes back to exception classes

Taxonomy:
    ValidationError      — malformed identifiers. The engine never raises it
                           (it drops such input locally); it is reserved for
                           callers and store adapters that need to reject one.
    BackendError         — the backing store failed; always propagated.
    ConcurrencyConflict  — a store reported a lost race on an edge; retried
                           once by the store before surfacing as BackendError.
    ConfigurationError   — invalid or missing configuration; raised by
                           load_config_from_env().

Absence of a node or edge is never an error: queries return empty results
and mutations are no-ops.
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "AclGraphError",
    "ConfigurationError",
    "ValidationError",
    "BackendError",
    "ConcurrencyConflict",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
]


# ---- Exception Hierarchy ----------------------------------------------------


class AclGraphError(Exception):
    """Base exception for aclgraph.

    Attributes:
        code: Stable error code string (e.g. "BACKEND_ERROR").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(AclGraphError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class ValidationError(AclGraphError):
    """Malformed or empty identifier."""

    code: str = "VALIDATION_ERROR"


class BackendError(AclGraphError):
    """The backing graph store failed."""

    code: str = "BACKEND_ERROR"
    message: str = "Graph store operation failed"


class ConcurrencyConflict(BackendError):
    """A permission-set or membership mutation lost a race."""

    code: str = "CONCURRENCY_CONFLICT"
    message: str = "Concurrent modification of the same edge"


# ---- Error Registry ---------------------------------------------------------

_E = TypeVar("_E", bound=type[AclGraphError])


class ErrorRegistry:
    """Registry for mapping stable error codes to exception classes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[AclGraphError]] = {}

    def register(self, code: str, error_cls: type[AclGraphError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[AclGraphError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[AclGraphError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("STORE_TIMEOUT")
        class StoreTimeout(BackendError):
            code = "STORE_TIMEOUT"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


# Register base errors
error_registry.register("INTERNAL_ERROR", AclGraphError)
error_registry.register("CONFIGURATION_ERROR", ConfigurationError)
error_registry.register("VALIDATION_ERROR", ValidationError)
error_registry.register("BACKEND_ERROR", BackendError)
error_registry.register("CONCURRENCY_CONFLICT", ConcurrencyConflict)
