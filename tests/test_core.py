"""End-to-end tests for the DatabaseCore facade."""

from __future__ import annotations

import pytest

from examples.observers.query_log import QueryLogObserver
from querycore import ConfigurationError, ConnectionState, DatabaseCore, ObserverError, QueryRejectedError
from tests.fakes import VALID_CONFIG, FakeDriver


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_full_lifecycle_reaches_observer_in_order() -> None:
    driver = FakeDriver()
    core = DatabaseCore(VALID_CONFIG, driver=driver)
    observer = QueryLogObserver()
    core.use(observer)

    await core.initialize()
    await core.connect()
    result = await core.execute_query("SELECT * FROM users WHERE id = ?", [1])
    await core.shutdown()

    assert observer.core is core
    assert observer.phases == [
        "init",
        "before_connect",
        "after_connect",
        "before_query",
        "after_query",
        "before_disconnect",
        "destroy",
    ]
    assert observer.entries[4][2] is result
    assert core.state is ConnectionState.DISCONNECTED
    assert driver.pool.closed is True


@pytest.mark.anyio
async def test_context_manager_connects_and_shuts_down() -> None:
    driver = FakeDriver()

    async with DatabaseCore(VALID_CONFIG, driver=driver) as core:
        assert core.is_connected() is True
        assert core.get_connection() is driver.pool
        stats = core.get_pool_info()
        assert stats is not None

    assert core.is_connected() is False
    assert driver.pool.closed is True


@pytest.mark.anyio
async def test_initialize_rejects_incomplete_config() -> None:
    core = DatabaseCore({"host": "db.internal"}, driver=FakeDriver())

    with pytest.raises(ConfigurationError, match="Missing required fields: password, database"):
        await core.initialize()


def test_use_rejects_observer_without_init() -> None:
    core = DatabaseCore(VALID_CONFIG, driver=FakeDriver())

    with pytest.raises(ObserverError):
        core.use(object())

    assert core.observers == ()


@pytest.mark.anyio
async def test_rejection_is_reported_to_observers() -> None:
    core = DatabaseCore(VALID_CONFIG, driver=FakeDriver())
    observer = QueryLogObserver()
    core.use(observer)
    await core.connect()

    with pytest.raises(QueryRejectedError):
        await core.execute_query("SELECT * FROM users WHERE id = 1 OR 1=1")

    assert observer.phases[-2:] == ["before_query", "on_error"]


@pytest.mark.anyio
async def test_execute_select_and_transaction_through_facade() -> None:
    driver = FakeDriver()
    core = DatabaseCore(VALID_CONFIG, driver=driver)
    await core.connect()

    await core.execute_select("users", {"id": 7}, {"limit": 1})
    results = await core.execute_transaction(
        [
            {"sql": "INSERT INTO users (email) VALUES (?)", "bindings": ["a@example.com"]},
            {"sql": "DELETE FROM sessions WHERE user_id = ?", "bindings": [7]},
        ]
    )

    assert len(results) == 2
    select_sql, bindings = driver.pool.user_statements[0]
    assert select_sql == 'SELECT * FROM "users" WHERE "id" = ? LIMIT 1'
    assert bindings == [7]


@pytest.mark.anyio
async def test_update_connection_keeps_config_store_in_sync() -> None:
    driver = FakeDriver()
    core = DatabaseCore(VALID_CONFIG, driver=driver)
    await core.connect()

    await core.update_connection(host="db2.internal")

    assert core.get_config("host") == "db2.internal"
    assert core.connections.config.host == "db2.internal"
    assert len(driver.pools) == 2
    assert driver.pools[0].closed is True


@pytest.mark.anyio
async def test_set_config_applies_on_next_initialize_only() -> None:
    core = DatabaseCore(VALID_CONFIG, driver=FakeDriver())
    await core.connect()

    core.set_config("password", "")

    assert core.get_config("password") == ""
    assert core.is_connected() is True
    with pytest.raises(ConfigurationError):
        await core.initialize()


@pytest.mark.anyio
async def test_validate_connection_through_facade() -> None:
    core = DatabaseCore(VALID_CONFIG, driver=FakeDriver())

    result = await core.validate_connection()

    assert result.valid is True
    assert core.is_connected() is False


def test_load_observers_registers_builtins(monkeypatch: pytest.MonkeyPatch) -> None:
    import importlib.metadata as metadata

    monkeypatch.setattr(metadata, "entry_points", lambda: metadata.EntryPoints(()))
    core = DatabaseCore(VALID_CONFIG, driver=FakeDriver())

    loaded = core.load_observers(builtin=[QueryLogObserver])

    assert [entry.name for entry in loaded] == ["query-log"]
    assert [entry.name for entry in core.observers] == ["query-log"]
