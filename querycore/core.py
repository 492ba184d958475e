"""Facade wiring configuration, connections, observers, and queries together."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from .config import ConfigStore, ConfigurationError
from .connections import Bindings, ConnectionManager, ConnectionState, PoolDriver, PoolHandle
from .models import ConnectionConfig, ConnectionResult, PoolStats, QueryResult, ValidationResult
from .observers import HookDispatcher, LifecycleObserver, ObserverLoader, RegisteredObserver
from .query import QueryRequest, QueryService


class DatabaseCore:
    """Single entry point for callers embedding the core."""

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        *,
        driver: PoolDriver | None = None,
        config_store: ConfigStore | None = None,
        dispatcher: HookDispatcher | None = None,
    ) -> None:
        self._config_store = config_store or ConfigStore(config or {})
        self._dispatcher = dispatcher or HookDispatcher()
        self._connections = ConnectionManager(
            self._config_store.snapshot(),
            driver=driver,
            dispatcher=self._dispatcher,
            config_store=self._config_store,
        )
        self._queries = QueryService(self._connections, self._dispatcher)

    async def __aenter__(self) -> DatabaseCore:
        await self.initialize()
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    @property
    def dispatcher(self) -> HookDispatcher:
        return self._dispatcher

    @property
    def state(self) -> ConnectionState:
        return self._connections.state

    @property
    def observers(self) -> Sequence[RegisteredObserver]:
        return self._dispatcher.observers

    async def initialize(self) -> None:
        """Validate the stored configuration and run every observer's ``init``."""

        validation = self._config_store.validate()
        if not validation.valid:
            raise ConfigurationError(f"Invalid configuration: {validation.error}")
        await self._dispatcher.init(self)

    def use(self, observer: LifecycleObserver) -> RegisteredObserver:
        """Register an observer; it must implement ``init``."""

        return self._dispatcher.register(observer)

    def load_observers(
        self,
        *,
        enabled: Iterable[str] | None = None,
        builtin: Iterable[object] | None = None,
    ) -> list[RegisteredObserver]:
        """Register observers published under the ``querycore.observers`` entry point group."""

        loader = ObserverLoader(self._dispatcher, enabled_observers=enabled, builtin_observers=builtin)
        return loader.load()

    async def connect(self) -> ConnectionResult:
        return await self._connections.connect()

    async def disconnect(self) -> None:
        await self._connections.disconnect()

    async def shutdown(self) -> None:
        """Disconnect if needed, then run every observer's ``destroy``."""

        if self._connections.is_connected():
            await self._connections.disconnect()
        await self._dispatcher.destroy()

    async def execute_query(
        self,
        sql: str,
        bindings: Bindings = None,
        options: Mapping[str, Any] | None = None,
    ) -> QueryResult:
        return await self._queries.execute_query(sql, bindings, options)

    async def execute_transaction(self, queries: Iterable[QueryRequest | Mapping[str, Any]]) -> list[QueryResult]:
        return await self._queries.execute_transaction(queries)

    async def execute_select(
        self,
        table: str,
        conditions: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> QueryResult:
        return await self._queries.execute_select(table, conditions, options)

    def is_connected(self) -> bool:
        return self._connections.is_connected()

    def get_connection(self) -> PoolHandle | None:
        return self._connections.get_connection()

    def get_pool_info(self) -> PoolStats | None:
        return self._connections.get_pool_info()

    async def update_connection(self, changes: Mapping[str, Any] | None = None, **extra: Any) -> ConnectionResult:
        return await self._connections.update_connection(changes, **extra)

    async def validate_connection(self, config: ConnectionConfig | Mapping[str, Any] | None = None) -> ValidationResult:
        return await self._connections.validate_connection(config)

    def get_config(self, key: str, default: Any = None) -> Any:
        return self._config_store.get(key, default)

    def set_config(self, key: str, value: Any) -> None:
        """Store a value for the next ``initialize``; the live connection is untouched."""

        self._config_store.set(key, value)


__all__ = ["DatabaseCore"]
