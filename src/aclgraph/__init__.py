from .config import AclConfig, EngineConfig, IdentifierConfig, LogLevel, load_config_from_env
from .engine import AuthorizationEngine
from .exceptions import (
    AclGraphError,
    BackendError,
    ConcurrencyConflict,
    ConfigurationError,
    ValidationError,
)
from .invocation import Invocation
from .logging import (
    safe_preview,
    AclFormatter,
    AclLoggerAdapter,
    setup_logging,
    get_acl_logger,
)
from .models import Decision, GrantEdge, GroupMembership, MembershipEdge, NodeKind, NodeRef
from .normalize import ensure_cous, ensure_id
from .store import CypherGraphStore, GraphStore, MemoryGraphStore, QueryExecutor

__all__ = [
    'AuthorizationEngine',
    'Invocation',
    'Decision',
    'GroupMembership',
    'MembershipEdge',
    'GrantEdge',
    'NodeKind',
    'NodeRef',
    'GraphStore',
    'MemoryGraphStore',
    'CypherGraphStore',
    'QueryExecutor',
    'AclConfig',
    'EngineConfig',
    'IdentifierConfig',
    'LogLevel',
    'load_config_from_env',
    'AclGraphError',
    'BackendError',
    'ConcurrencyConflict',
    'ConfigurationError',
    'ValidationError',
    'ensure_cous',
    'ensure_id',
    'safe_preview',
    'AclFormatter',
    'AclLoggerAdapter',
    'setup_logging',
    'get_acl_logger',
]
