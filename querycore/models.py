"""Shared dataclasses used across config, connection, and query modules."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3050
DEFAULT_USERNAME = "SYSDBA"
DEFAULT_ACQUIRE_TIMEOUT = 30_000
DEFAULT_POOL_MIN = 2
DEFAULT_POOL_MAX = 10

# Canonical pool option names mapped to PoolSettings attributes.
POOL_FIELDS: dict[str, str] = {
    "min": "min",
    "max": "max",
    "acquireTimeoutMillis": "acquire_timeout_millis",
    "createTimeoutMillis": "create_timeout_millis",
    "destroyTimeoutMillis": "destroy_timeout_millis",
    "idleTimeoutMillis": "idle_timeout_millis",
    "reapIntervalMillis": "reap_interval_millis",
    "createRetryIntervalMillis": "create_retry_interval_millis",
    "maxConnectionLifetimeMillis": "max_connection_lifetime_millis",
    "maxConnectionLifetimeJitterMillis": "max_connection_lifetime_jitter_millis",
    "propagateCreateError": "propagate_create_error",
    "validate": "validate",
    "afterCreate": "after_create",
}


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Runtime connection configuration owned by the connection manager."""

    host: str = DEFAULT_HOST
    port: Any = DEFAULT_PORT
    username: str = DEFAULT_USERNAME
    password: str = ""
    database: str = ""
    client_lib_path: str | None = None
    acquire_timeout: Any = DEFAULT_ACQUIRE_TIMEOUT
    pool: Mapping[str, Any] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)

    def with_updates(self, **changes: Any) -> ConnectionConfig:
        """Return a copy with ``changes`` applied; ``pool`` is merged, not replaced."""

        pool_changes = changes.pop("pool", None)
        unknown = set(changes) - set(self.__dataclass_fields__)
        if unknown:
            raise TypeError(f"Unknown connection fields: {', '.join(sorted(unknown))}")
        if pool_changes:
            changes["pool"] = {**self.pool, **pool_changes}
        if "options" in changes:
            changes["options"] = dict(changes["options"] or {})
        return replace(self, **changes)

    def non_pool_items(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if name != "pool"
        }


@dataclass(frozen=True, slots=True)
class PoolSettings:
    """Sanitized pool settings handed to the driver for one connect cycle."""

    min: Any = DEFAULT_POOL_MIN
    max: Any = DEFAULT_POOL_MAX
    acquire_timeout_millis: Any = None
    create_timeout_millis: Any = None
    destroy_timeout_millis: Any = None
    idle_timeout_millis: Any = None
    reap_interval_millis: Any = None
    create_retry_interval_millis: Any = None
    max_connection_lifetime_millis: Any = None
    max_connection_lifetime_jitter_millis: Any = None
    propagate_create_error: bool | None = None
    validate: Callable[[Any], Any] | None = None
    after_create: Callable[[Any], Any] | None = None

    def as_options(self) -> dict[str, Any]:
        """Canonical (camelCase) view of the settings that are set."""

        return {
            key: getattr(self, attr)
            for key, attr in POOL_FIELDS.items()
            if getattr(self, attr) is not None
        }


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of a config, connection, or SQL validation check."""

    valid: bool
    message: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, message: str) -> ValidationResult:
        return cls(valid=True, message=message)

    @classmethod
    def rejected(cls, error: str) -> ValidationResult:
        return cls(valid=False, error=error)


@dataclass(frozen=True, slots=True)
class ConnectionResult:
    """Returned by a successful connect."""

    success: bool
    message: str


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized statement output returned by pool handles."""

    columns: tuple[str, ...]
    rows: tuple[tuple[object, ...], ...]
    status: str
    elapsed_ms: int
    row_count: int | None = None

    def records(self) -> list[dict[str, object]]:
        """Rows as column-keyed dictionaries."""

        return [dict(zip(self.columns, row)) for row in self.rows]


@dataclass(frozen=True, slots=True)
class PoolStats:
    """Point-in-time pool occupancy."""

    free: int
    used: int
    pending_creates: int = 0


__all__ = [
    "ConnectionConfig",
    "ConnectionResult",
    "POOL_FIELDS",
    "PoolSettings",
    "PoolStats",
    "QueryResult",
    "ValidationResult",
]
