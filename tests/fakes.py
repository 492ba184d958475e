"""In-memory pool handles and drivers shared by the test suite."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from querycore.connections import PoolEvent
from querycore.models import ConnectionConfig, PoolSettings, PoolStats, QueryResult


class FakeTransaction:
    def __init__(self, pool: FakePool) -> None:
        self._pool = pool
        self.pending: list[tuple[str, Any]] = []

    async def execute(self, sql: str, bindings: Any = None) -> QueryResult:
        result = self._pool._run(sql, bindings)
        self.pending.append((sql, bindings))
        return result


class FakePool:
    """Pool handle that records statements and applies transactions atomically."""

    def __init__(
        self,
        *,
        fail_on: str | None = None,
        fail_open: BaseException | None = None,
        fail_close: BaseException | None = None,
        close_failures: int = 1,
    ) -> None:
        self.fail_on = fail_on
        self.fail_open = fail_open
        self.fail_close = fail_close
        self._close_failures = close_failures
        self.statements: list[tuple[str, Any]] = []
        self.applied: list[tuple[str, Any]] = []
        self.listeners: set[Callable[[PoolEvent], None]] = set()
        self.opened = False
        self.closed = False
        self.rolled_back = False

    async def open(self) -> None:
        if self.fail_open is not None:
            raise self.fail_open
        self.opened = True

    async def execute(self, sql: str, bindings: Any = None) -> QueryResult:
        result = self._run(sql, bindings)
        self.applied.append((sql, bindings))
        return result

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[FakeTransaction]:
        trx = FakeTransaction(self)
        try:
            yield trx
        except BaseException:
            self.rolled_back = True
            raise
        self.applied.extend(trx.pending)

    async def close(self) -> None:
        if self.fail_close is not None and self._close_failures > 0:
            self._close_failures -= 1
            raise self.fail_close
        self.closed = True

    def pool_stats(self) -> PoolStats:
        return PoolStats(free=2, used=1, pending_creates=0)

    def subscribe(self, listener: Callable[[PoolEvent], None]) -> Callable[[], None]:
        self.listeners.add(listener)
        return lambda: self.listeners.discard(listener)

    def emit(self, kind: str, **detail: Any) -> None:
        for listener in tuple(self.listeners):
            listener(PoolEvent(kind=kind, detail=detail))

    @property
    def user_statements(self) -> list[tuple[str, Any]]:
        """Executed statements other than the liveness probe."""

        return [entry for entry in self.statements if entry[0] != FakeDriver.probe_sql]

    def _run(self, sql: str, bindings: Any) -> QueryResult:
        self.statements.append((sql, bindings))
        if self.fail_on is not None and self.fail_on in sql:
            raise RuntimeError(f"driver exploded on: {sql}")
        return QueryResult(columns=("id",), rows=((1,),), status="1 row(s)", elapsed_ms=1, row_count=1)


class FakeDriver:
    """Driver handing out FakePool instances built by ``factory``."""

    probe_sql = "SELECT 1 AS test FROM RDB$DATABASE"

    def __init__(self, factory: Callable[[], FakePool] = FakePool) -> None:
        self._factory = factory
        self.pools: list[FakePool] = []
        self.created: list[tuple[ConnectionConfig, PoolSettings]] = []

    def create(self, config: ConnectionConfig, settings: PoolSettings) -> FakePool:
        pool = self._factory()
        self.created.append((config, settings))
        self.pools.append(pool)
        return pool

    @property
    def pool(self) -> FakePool:
        return self.pools[-1]


VALID_CONFIG: dict[str, Any] = {
    "host": "db.internal",
    "port": 3050,
    "username": "SYSDBA",
    "password": "masterkey",
    "database": "/data/employee.fdb",
}


class Recorder:
    """Observer that appends ``(label, phase)`` to a shared journal."""

    def __init__(self, label: str, journal: list[tuple[str, str]], *, fail_on: str | None = None) -> None:
        self.name = label
        self.version = "1.0.0"
        self._journal = journal
        self._fail_on = fail_on
        self.payloads: dict[str, list[Any]] = {}

    def _note(self, phase: str, payload: Any = None) -> None:
        self._journal.append((self.name, phase))
        self.payloads.setdefault(phase, []).append(payload)
        if phase == self._fail_on:
            raise RuntimeError(f"{self.name} failed in {phase}")

    async def init(self, core: Any) -> None:
        self._note("init", core)

    async def before_connect(self, config: Any) -> None:
        self._note("before_connect", config)

    async def after_connect(self, handle: Any) -> None:
        self._note("after_connect", handle)

    async def before_query(self, request: Any) -> None:
        self._note("before_query", request)

    async def after_query(self, result: Any) -> None:
        self._note("after_query", result)

    async def before_disconnect(self) -> None:
        self._note("before_disconnect")

    async def on_error(self, error: BaseException) -> None:
        self._note("on_error", error)

    async def destroy(self) -> None:
        self._note("destroy")
