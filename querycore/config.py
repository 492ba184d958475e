"""Connection configuration normalization and validation helpers."""

from __future__ import annotations

from dataclasses import fields
from typing import Annotated, Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, StringConstraints, ValidationError, model_validator

from .models import POOL_FIELDS, ConnectionConfig, PoolSettings, ValidationResult
from .models import DEFAULT_ACQUIRE_TIMEOUT, DEFAULT_HOST, DEFAULT_POOL_MAX, DEFAULT_POOL_MIN, DEFAULT_PORT, DEFAULT_USERNAME


class ConfigurationError(RuntimeError):
    """Raised when a configuration cannot produce a usable connection."""


# Millisecond-less pool names accepted for backward compatibility.
LEGACY_POOL_KEYS: Mapping[str, str] = {
    "acquireTimeout": "acquireTimeoutMillis",
    "createTimeout": "createTimeoutMillis",
    "destroyTimeout": "destroyTimeoutMillis",
    "idleTimeout": "idleTimeoutMillis",
    "reapInterval": "reapIntervalMillis",
    "createRetryInterval": "createRetryIntervalMillis",
}

LEGACY_CONNECTION_KEYS: Mapping[str, str] = {
    "user": "username",
    "clientLibPath": "client_lib_path",
    "acquireTimeout": "acquire_timeout",
}

REQUIRED_FIELDS = ("host", "port", "username", "password", "database")

_CONNECTION_FIELDS = frozenset(field.name for field in fields(ConnectionConfig))


def normalize(raw: Mapping[str, Any] | None = None) -> tuple[ConnectionConfig, PoolSettings]:
    """Normalize raw settings into a connection config and its pool settings."""

    config = normalize_connection(raw)
    return config, normalize_pool(config)


def normalize_connection(raw: Mapping[str, Any] | None = None) -> ConnectionConfig:
    """Apply defaults and legacy aliases; unknown top-level keys are dropped."""

    data: dict[str, Any] = {}
    if isinstance(raw, Mapping):
        for key, value in raw.items():
            if key in LEGACY_CONNECTION_KEYS:
                data.setdefault(LEGACY_CONNECTION_KEYS[key], value)
            elif key in _CONNECTION_FIELDS:
                data[key] = value
    pool = data.get("pool")
    options = data.get("options")
    return ConnectionConfig(
        host=data.get("host") or DEFAULT_HOST,
        port=data.get("port") or DEFAULT_PORT,
        username=data.get("username") or DEFAULT_USERNAME,
        password=data.get("password") or "",
        database=data.get("database") or "",
        client_lib_path=data.get("client_lib_path") or None,
        acquire_timeout=data.get("acquire_timeout") or DEFAULT_ACQUIRE_TIMEOUT,
        pool=dict(pool) if isinstance(pool, Mapping) else {},
        options=dict(options) if isinstance(options, Mapping) else {},
    )


def normalize_pool(config: ConnectionConfig) -> PoolSettings:
    """Translate legacy names, drop unrecognized keys, and fill min/max defaults."""

    raw_pool: dict[str, Any] = {"acquireTimeout": config.acquire_timeout}
    raw_pool.update(config.pool)
    return PoolSettings(**sanitize_pool_options(raw_pool))


def sanitize_pool_options(pool: Mapping[str, Any]) -> dict[str, Any]:
    """Return PoolSettings keyword arguments for the allow-listed keys of ``pool``."""

    canonical: dict[str, Any] = {}
    for key, value in pool.items():
        if key in POOL_FIELDS:
            canonical[key] = value
    for legacy, key in LEGACY_POOL_KEYS.items():
        if legacy in pool and canonical.get(key) is None:
            canonical[key] = pool[legacy]
    settings = {POOL_FIELDS[key]: value for key, value in canonical.items() if value is not None}
    settings.setdefault("min", DEFAULT_POOL_MIN)
    settings.setdefault("max", DEFAULT_POOL_MAX)
    return settings


NonEmptyStr = Annotated[StrictStr, StringConstraints(strip_whitespace=True, min_length=1)]
NonNegativeMillis = Annotated[StrictInt, Field(ge=0)]


class ConnectionSchema(BaseModel):
    """Shape a connection config must satisfy before connecting."""

    model_config = ConfigDict(extra="ignore")

    host: NonEmptyStr
    port: Annotated[StrictInt, Field(gt=0)]
    username: NonEmptyStr
    password: NonEmptyStr
    database: NonEmptyStr
    client_lib_path: StrictStr | None = None
    acquire_timeout: NonNegativeMillis = DEFAULT_ACQUIRE_TIMEOUT


class PoolSchema(BaseModel):
    """Numeric bounds for pool settings."""

    model_config = ConfigDict(extra="ignore")

    min: Annotated[StrictInt, Field(ge=0)]
    max: Annotated[StrictInt, Field(ge=1)]
    acquire_timeout_millis: NonNegativeMillis | None = None
    create_timeout_millis: NonNegativeMillis | None = None
    destroy_timeout_millis: NonNegativeMillis | None = None
    idle_timeout_millis: NonNegativeMillis | None = None
    reap_interval_millis: NonNegativeMillis | None = None
    create_retry_interval_millis: NonNegativeMillis | None = None
    max_connection_lifetime_millis: NonNegativeMillis | None = None
    max_connection_lifetime_jitter_millis: NonNegativeMillis | None = None
    propagate_create_error: StrictBool | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> PoolSchema:
        if self.min > self.max:
            raise ValueError(f"pool min ({self.min}) must not exceed max ({self.max})")
        return self


def validate_config(config: ConnectionConfig) -> ValidationResult:
    """Check required fields and their types."""

    missing = [name for name in REQUIRED_FIELDS if not getattr(config, name)]
    if missing:
        return ValidationResult.rejected(f"Missing required fields: {', '.join(missing)}")
    try:
        ConnectionSchema.model_validate(config.non_pool_items())
    except ValidationError as exc:
        return ValidationResult.rejected(_describe(exc))
    return ValidationResult.ok("Configuration is valid")


def validate_pool_settings(settings: PoolSettings) -> ValidationResult:
    """Check min <= max and that every timeout is non-negative."""

    values = {
        attr: getattr(settings, attr)
        for attr in POOL_FIELDS.values()
        if attr not in ("validate", "after_create")
    }
    for attr in ("validate", "after_create"):
        hook = getattr(settings, attr)
        if hook is not None and not callable(hook):
            return ValidationResult.rejected(f"pool.{attr}: must be callable")
    try:
        PoolSchema.model_validate(values)
    except ValidationError as exc:
        return ValidationResult.rejected(_describe(exc, prefix="pool."))
    return ValidationResult.ok("Pool settings are valid")


def _describe(exc: ValidationError, *, prefix: str = "") -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        parts.append(f"{prefix}{location}: {message}" if location else f"{prefix.rstrip('.')}: {message}")
    return "; ".join(parts)


class ConfigStore:
    """Secondary, key-addressable configuration store shared with the core."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = {}
        if initial:
            self.update(initial)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._values.get(key)
        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        self._values[LEGACY_CONNECTION_KEYS.get(key, key)] = value

    def update(self, values: Mapping[str, Any]) -> None:
        """Merge ``values`` into the store; later keys win."""

        for key, value in values.items():
            self.set(key, value)

    def snapshot(self) -> ConnectionConfig:
        """Return the normalized connection config for the current values."""

        return normalize_connection(self._values)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def validate(self) -> ValidationResult:
        return validate_config(self.snapshot())


__all__ = [
    "ConfigStore",
    "ConfigurationError",
    "ConnectionSchema",
    "LEGACY_CONNECTION_KEYS",
    "LEGACY_POOL_KEYS",
    "PoolSchema",
    "normalize",
    "normalize_connection",
    "normalize_pool",
    "sanitize_pool_options",
    "validate_config",
    "validate_pool_settings",
]
