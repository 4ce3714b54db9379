"""RoleGate Storage Layer - policy store contract with in-memory and SQLAlchemy backends."""

from .base import PolicyStore, StorageAdapter
from .memory import InMemoryPolicyStore
from .sql_adapter import DatabaseConfig, SqlAlchemyAdapter
from .sql_store import SqlPolicyStore

__all__ = [
    "PolicyStore",
    "StorageAdapter",
    "InMemoryPolicyStore",
    "DatabaseConfig",
    "SqlAlchemyAdapter",
    "SqlPolicyStore",
]
