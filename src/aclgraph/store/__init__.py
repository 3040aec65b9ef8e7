"""Graph stores for aclgraph.

Provides:
- ``GraphStore`` — abstract transactional store interface.
- ``MemoryGraphStore`` — in-process store with per-node locking.
- ``CypherGraphStore`` — renders Cypher for a caller-supplied executor.
"""

from .base import GraphStore
from .cypher import CypherGraphStore, QueryExecutor, rename_identifiers
from .memory import MemoryGraphStore

__all__ = [
    "CypherGraphStore",
    "GraphStore",
    "MemoryGraphStore",
    "QueryExecutor",
    "rename_identifiers",
]
