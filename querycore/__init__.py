"""Pooled SQL execution core with validation and lifecycle observers."""

__version__ = "0.1.0"

from .config import ConfigStore, ConfigurationError, normalize, validate_config
from .connections import (
    AsyncpgPoolDriver,
    ConnectionManager,
    ConnectionState,
    DisconnectError,
    NotConnectedError,
    PoolDriver,
    PoolHandle,
)
from .core import DatabaseCore
from .models import ConnectionConfig, ConnectionResult, PoolSettings, PoolStats, QueryResult, ValidationResult
from .observers import HookDispatcher, HookPhase, ObserverBase, ObserverError
from .query import QueryExecutionError, QueryRejectedError, QueryRequest, QueryService
from .validation import validate_sql, validate_sql_for_transaction

__all__ = [
    "AsyncpgPoolDriver",
    "ConfigStore",
    "ConfigurationError",
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionResult",
    "ConnectionState",
    "DatabaseCore",
    "DisconnectError",
    "HookDispatcher",
    "HookPhase",
    "NotConnectedError",
    "ObserverBase",
    "ObserverError",
    "PoolDriver",
    "PoolHandle",
    "PoolSettings",
    "PoolStats",
    "QueryExecutionError",
    "QueryRejectedError",
    "QueryRequest",
    "QueryResult",
    "QueryService",
    "ValidationResult",
    "__version__",
    "normalize",
    "validate_config",
    "validate_sql",
    "validate_sql_for_transaction",
]
