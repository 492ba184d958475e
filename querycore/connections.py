"""Pool drivers and the connection lifecycle manager."""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Iterable, Mapping, Protocol, Sequence, runtime_checkable

import asyncpg

from .config import ConfigStore, ConfigurationError, LEGACY_CONNECTION_KEYS, normalize_connection, normalize_pool, validate_config, validate_pool_settings
from .models import ConnectionConfig, ConnectionResult, PoolSettings, PoolStats, QueryResult, ValidationResult
from .observers import HookDispatcher

LOG = logging.getLogger(__name__)

Bindings = Sequence[Any] | Mapping[str, Any] | None


class NotConnectedError(RuntimeError):
    """Raised when an operation needs a live connection and there is none."""


class DisconnectError(RuntimeError):
    """Raised when closing the pool fails."""


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PoolEvent:
    """Informational event emitted by a pool handle."""

    kind: str
    detail: Mapping[str, Any] = field(default_factory=dict)


PoolEventListener = Callable[[PoolEvent], None]


class TransactionHandle(Protocol):
    """Statement execution bound to one open transaction."""

    async def execute(self, sql: str, bindings: Bindings = None) -> QueryResult: ...


@runtime_checkable
class PoolHandle(Protocol):
    """Narrow view of a live connection pool used by the core."""

    async def open(self) -> None:
        """Create the underlying pool."""

    async def execute(self, sql: str, bindings: Bindings = None) -> QueryResult:
        """Run one statement on a pooled connection."""

    def transaction(self) -> AsyncContextManager[TransactionHandle]:
        """Open a transaction; leaving the block with an error rolls it back."""

    async def close(self) -> None:
        """Release every pooled connection."""

    def pool_stats(self) -> PoolStats:
        """Current free/used/pending counts."""

    def subscribe(self, listener: PoolEventListener) -> Callable[[], None]:
        """Subscribe to pool events; returns an unsubscribe handle."""


class PoolDriver(Protocol):
    """Factory for pool handles plus the statement used as a liveness probe."""

    probe_sql: str

    def create(self, config: ConnectionConfig, settings: PoolSettings) -> PoolHandle: ...


class AsyncpgPoolDriver:
    """Pool driver backed by ``asyncpg.create_pool``."""

    probe_sql = "SELECT 1 AS test FROM pg_catalog.pg_database LIMIT 1"

    def create(self, config: ConnectionConfig, settings: PoolSettings) -> AsyncpgPoolHandle:
        return AsyncpgPoolHandle(config, settings)


class AsyncpgPoolHandle:
    """Pool handle wrapping an asyncpg pool and emitting pool events."""

    _DEFAULT_RETRY_INTERVAL_MS = 200
    _DEFAULT_CREATE_TIMEOUT_MS = 30_000

    def __init__(self, config: ConnectionConfig, settings: PoolSettings) -> None:
        self._config = config
        self._settings = settings
        self._pool: asyncpg.Pool | None = None
        self._listeners: set[PoolEventListener] = set()
        self._pending_creates = 0

    async def open(self) -> None:
        settings = self._settings
        retry_ms = settings.create_retry_interval_millis or self._DEFAULT_RETRY_INTERVAL_MS
        budget_ms = settings.create_timeout_millis or self._DEFAULT_CREATE_TIMEOUT_MS
        propagate = settings.propagate_create_error is not False
        deadline = time.monotonic() + budget_ms / 1000
        while True:
            self._pending_creates = settings.min
            try:
                self._pool = await asyncpg.create_pool(**self._pool_kwargs())
            except Exception as exc:
                self._emit("create-fail", error=str(exc))
                if propagate or time.monotonic() + retry_ms / 1000 > deadline:
                    raise
                await asyncio.sleep(retry_ms / 1000)
            else:
                return
            finally:
                self._pending_creates = 0

    async def execute(self, sql: str, bindings: Bindings = None) -> QueryResult:
        async with self._acquire() as conn:
            return await self._run(conn, sql, bindings)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TransactionHandle]:
        async with self._acquire() as conn:
            async with conn.transaction():
                yield _AsyncpgTransaction(self, conn)

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is None:
            return
        timeout_ms = self._settings.destroy_timeout_millis
        try:
            if timeout_ms:
                await asyncio.wait_for(pool.close(), timeout=timeout_ms / 1000)
            else:
                await pool.close()
        except asyncio.TimeoutError:
            pool.terminate()
        self._emit("destroy")

    def pool_stats(self) -> PoolStats:
        if self._pool is None:
            return PoolStats(free=0, used=0, pending_creates=self._pending_creates)
        size = self._pool.get_size()
        free = self._pool.get_idle_size()
        return PoolStats(free=free, used=size - free, pending_creates=self._pending_creates)

    def subscribe(self, listener: PoolEventListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def _run(self, conn: Any, sql: str, bindings: Bindings) -> QueryResult:
        statement, args = bind_parameters(sql, bindings)
        self._emit("query", sql=statement, bindings=args)
        started = time.perf_counter()
        try:
            if _returns_rows(statement):
                records = await conn.fetch(statement, *args)
                columns, rows = _records_to_rows(records)
                status = f"{len(rows)} row(s)"
                row_count: int | None = len(rows)
            else:
                status = await conn.execute(statement, *args)
                columns, rows, row_count = (), (), None
        except Exception as exc:
            self._emit("query-error", sql=statement, error=str(exc))
            raise
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        result = QueryResult(columns=columns, rows=rows, status=status, elapsed_ms=elapsed_ms, row_count=row_count)
        self._emit("query-response", sql=statement, row_count=row_count, elapsed_ms=elapsed_ms)
        return result

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[Any]:
        if self._pool is None:
            raise RuntimeError("Pool is not open")
        timeout_ms = self._settings.acquire_timeout_millis
        timeout = timeout_ms / 1000 if timeout_ms is not None else None
        async with self._pool.acquire(timeout=timeout) as conn:
            self._emit("acquire")
            try:
                yield conn
            finally:
                self._emit("release")

    def _pool_kwargs(self) -> dict[str, Any]:
        config = self._config
        settings = self._settings
        kwargs: dict[str, Any] = {
            "host": config.host,
            "port": config.port,
            "user": config.username,
            "password": config.password,
            "database": config.database,
            "min_size": settings.min,
            "max_size": settings.max,
            "init": self._after_create,
        }
        if settings.create_timeout_millis is not None:
            kwargs["timeout"] = settings.create_timeout_millis / 1000
        if settings.idle_timeout_millis is not None:
            kwargs["max_inactive_connection_lifetime"] = settings.idle_timeout_millis / 1000
        if settings.validate is not None:
            kwargs["setup"] = self._validate
        kwargs.update(config.options)
        return kwargs

    async def _after_create(self, conn: Any) -> None:
        self._emit("create-success")
        hook = self._settings.after_create
        if hook is not None:
            result = hook(conn)
            if inspect.isawaitable(result):
                await result

    async def _validate(self, conn: Any) -> None:
        hook = self._settings.validate
        assert hook is not None  # only installed when configured
        result = hook(conn)
        if inspect.isawaitable(result):
            result = await result
        if result is False:
            raise ConnectionError("Pooled connection failed validation")

    def _emit(self, kind: str, **detail: Any) -> None:
        event = PoolEvent(kind=kind, detail=detail)
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception:
                LOG.exception("Pool event listener failed", extra={"pool_event": kind})


class _AsyncpgTransaction:
    def __init__(self, handle: AsyncpgPoolHandle, conn: Any) -> None:
        self._handle = handle
        self._conn = conn

    async def execute(self, sql: str, bindings: Bindings = None) -> QueryResult:
        return await self._handle._run(self._conn, sql, bindings)


_LITERAL_SPLIT = re.compile(r"('(?:[^']|'')*'|\"(?:[^\"]|\"\")*\")")
_NAMED_PLACEHOLDER = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)")


def bind_parameters(sql: str, bindings: Bindings) -> tuple[str, tuple[Any, ...]]:
    """Rewrite ``?`` or ``:name`` placeholders to ``$n`` and order the arguments.

    Quoted literals and identifiers are left untouched. SQL that already uses
    ``$n`` placeholders is passed through with the sequence as-is.
    """

    if bindings is None:
        return sql, ()
    parts = _LITERAL_SPLIT.split(sql)
    if isinstance(bindings, Mapping):
        order: list[str] = []

        def _named(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in bindings:
                raise ValueError(f"Missing binding for :{name}")
            if name not in order:
                order.append(name)
            return f"${order.index(name) + 1}"

        rewritten = [part if idx % 2 else _NAMED_PLACEHOLDER.sub(_named, part) for idx, part in enumerate(parts)]
        return "".join(rewritten), tuple(bindings[name] for name in order)

    args = tuple(bindings)
    if not any("?" in part for idx, part in enumerate(parts) if idx % 2 == 0):
        return sql, args
    counter = 0

    def _positional(_: re.Match[str]) -> str:
        nonlocal counter
        counter += 1
        return f"${counter}"

    rewritten = [part if idx % 2 else re.sub(r"\?", _positional, part) for idx, part in enumerate(parts)]
    if counter != len(args):
        raise ValueError(f"Statement has {counter} placeholder(s) but {len(args)} binding(s) were given")
    return "".join(rewritten), args


_LEADING_KEYWORD = re.compile(r"[\s(]*([A-Za-z]+)")


def _returns_rows(statement: str) -> bool:
    match = _LEADING_KEYWORD.match(statement)
    if match is None:
        return False
    head = match.group(1).lower()
    if head in {"select", "with", "show", "values", "table", "explain"}:
        return True
    return " returning " in f" {statement.lower()} "


def _records_to_rows(records: Iterable[Any]) -> tuple[tuple[str, ...], tuple[tuple[object, ...], ...]]:
    # Column names may repeat (joins), so values are read positionally.
    rows: list[tuple[object, ...]] = []
    columns: tuple[str, ...] = ()
    for record in records:
        if not rows:
            columns = tuple(str(key) for key in record.keys())
        rows.append(tuple(record.values()))
    return columns, tuple(rows)


def describe_target(config: ConnectionConfig) -> str:
    """Connection target for logs; never includes the password."""

    return f"{config.username}@{config.host}:{config.port}/{config.database}"


class ConnectionManager:
    """Owns the pooled connection and drives its lifecycle."""

    def __init__(
        self,
        config: ConnectionConfig | Mapping[str, Any] | None = None,
        *,
        driver: PoolDriver | None = None,
        dispatcher: HookDispatcher | None = None,
        config_store: ConfigStore | None = None,
    ) -> None:
        if isinstance(config, ConnectionConfig):
            self._config = config
        else:
            self._config = normalize_connection(config)
        self._driver = driver or AsyncpgPoolDriver()
        self._dispatcher = dispatcher or HookDispatcher()
        self._config_store = config_store
        self._handle: PoolHandle | None = None
        self._pool_settings: PoolSettings | None = None
        self._state = ConnectionState.DISCONNECTED

    @property
    def config(self) -> ConnectionConfig:
        """Current connection configuration."""

        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pool_settings(self) -> PoolSettings | None:
        """Settings the live pool was built with, if connected."""

        return self._pool_settings

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._handle is not None

    def get_connection(self) -> PoolHandle | None:
        """Return the live pool handle, or None when not connected."""

        return self._handle if self.is_connected() else None

    async def connect(self) -> ConnectionResult:
        """Build the pool, probe it, and move to CONNECTED.

        Any failure leaves the manager in FAILED with no handle, runs the
        ``on_error`` phase, and raises ConfigurationError.
        """

        if self.is_connected():
            return ConnectionResult(success=True, message="Already connected")
        stale, self._handle = self._handle, None
        if stale is not None:
            await self._discard(stale)
        config = self._config
        self._state = ConnectionState.CONNECTING
        handle: PoolHandle | None = None
        try:
            await self._dispatcher.before_connect(config)
            settings = normalize_pool(config)
            self._ensure_usable(config, settings)
            handle = self._driver.create(config, settings)
            handle.subscribe(self._log_pool_event)
            await handle.open()
            await handle.execute(self._driver.probe_sql)
            self._handle = handle
            self._pool_settings = settings
            self._state = ConnectionState.CONNECTED
            await self._dispatcher.after_connect(handle)
        except Exception as exc:
            self._state = ConnectionState.FAILED
            self._handle = None
            self._pool_settings = None
            if handle is not None:
                await self._discard(handle)
            LOG.error("Connection failed", extra={"target": describe_target(config), "error": str(exc)})
            await self._dispatcher.on_error(exc)
            raise ConfigurationError(f"Connection failed: {exc}") from exc
        LOG.info("Connected", extra={"target": describe_target(config)})
        return ConnectionResult(success=True, message="Connection established")

    async def disconnect(self) -> None:
        """Close the pool; on failure the handle is kept so the close can be retried."""

        try:
            await self._dispatcher.before_disconnect()
            handle = self._handle
            if handle is not None:
                self._state = ConnectionState.DISCONNECTING
                await handle.close()
                self._handle = None
                self._pool_settings = None
            self._state = ConnectionState.DISCONNECTED
        except Exception as exc:
            if self._state is ConnectionState.DISCONNECTING:
                self._state = ConnectionState.FAILED
            LOG.error("Disconnect failed", extra={"target": describe_target(self._config), "error": str(exc)})
            await self._dispatcher.on_error(exc)
            raise DisconnectError(f"Disconnect failed: {exc}") from exc
        LOG.info("Disconnected", extra={"target": describe_target(self._config)})

    async def update_connection(self, changes: Mapping[str, Any] | None = None, **extra: Any) -> ConnectionResult:
        """Apply ``changes`` to the config and reconnect with it."""

        updates = {LEGACY_CONNECTION_KEYS.get(key, key): value for key, value in {**(changes or {}), **extra}.items()}
        try:
            updated = self._config.with_updates(**updates)
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc
        if self.is_connected():
            await self.disconnect()
        self._config = updated
        if self._config_store is not None:
            for key, value in updates.items():
                if key != "pool":
                    self._config_store.set(key, value)
        return await self.connect()

    async def validate_connection(self, config: ConnectionConfig | Mapping[str, Any] | None = None) -> ValidationResult:
        """Probe ``config`` (or the current config) on a throwaway pool."""

        if config is None:
            target = self._config
        elif isinstance(config, ConnectionConfig):
            target = config
        else:
            target = normalize_connection(config)
        checked = validate_config(target)
        if not checked.valid:
            return checked
        settings = PoolSettings(min=1, max=1, create_timeout_millis=normalize_pool(target).create_timeout_millis)
        handle = self._driver.create(target, settings)
        try:
            await handle.open()
            await handle.execute(self._driver.probe_sql)
        except Exception as exc:
            return ValidationResult.rejected(str(exc))
        finally:
            await self._discard(handle)
        return ValidationResult.ok("Connection is valid")

    def get_pool_info(self) -> PoolStats | None:
        handle = self.get_connection()
        if handle is None:
            return None
        return handle.pool_stats()

    def _ensure_usable(self, config: ConnectionConfig, settings: PoolSettings) -> None:
        for result in (validate_config(config), validate_pool_settings(settings)):
            if not result.valid:
                raise ConfigurationError(f"Invalid configuration: {result.error}")
        if config.client_lib_path and not Path(config.client_lib_path).exists():
            raise ConfigurationError(f"Client library file not found at: {config.client_lib_path}")

    async def _discard(self, handle: PoolHandle) -> None:
        try:
            await handle.close()
        except Exception:
            LOG.warning("Failed to close discarded pool", exc_info=True)

    def _log_pool_event(self, event: PoolEvent) -> None:
        level = logging.WARNING if event.kind in {"query-error", "create-fail"} else logging.DEBUG
        LOG.log(level, "Pool event: %s", event.kind, extra={"pool_event": event.kind, **_loggable(event.detail)})


def _loggable(detail: Mapping[str, Any]) -> dict[str, Any]:
    return {f"pool_{key}": value for key, value in detail.items() if key != "bindings"}


__all__ = [
    "AsyncpgPoolDriver",
    "AsyncpgPoolHandle",
    "Bindings",
    "ConnectionManager",
    "ConnectionState",
    "DisconnectError",
    "NotConnectedError",
    "PoolDriver",
    "PoolEvent",
    "PoolEventListener",
    "PoolHandle",
    "TransactionHandle",
    "bind_parameters",
    "describe_target",
]
