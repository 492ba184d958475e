"""Query execution services: raw queries, transactions, and structured selects."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from sqlglot import exp

from .connections import Bindings, ConnectionManager, NotConnectedError, PoolHandle
from .models import QueryResult
from .observers import HookDispatcher
from .validation import validate_sql, validate_sql_for_transaction

LOG = logging.getLogger(__name__)


class QueryRejectedError(RuntimeError):
    """Raised when SQL fails validation; the driver is never reached."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Query rejected: {reason}")
        self.reason = reason


class QueryExecutionError(RuntimeError):
    """Raised when the driver fails to execute a statement."""


@dataclass(frozen=True, slots=True)
class QueryRequest:
    """Payload handed to ``before_query`` observers."""

    sql: str | None = None
    bindings: Bindings = None
    options: Mapping[str, Any] | None = None
    table: str | None = None
    conditions: Mapping[str, Any] | None = None


class QueryService:
    """Validates and runs SQL against the manager's live pool."""

    def __init__(self, connections: ConnectionManager, dispatcher: HookDispatcher | None = None) -> None:
        self._connections = connections
        self._dispatcher = dispatcher or HookDispatcher()

    async def execute_query(
        self,
        sql: str,
        bindings: Bindings = None,
        options: Mapping[str, Any] | None = None,
    ) -> QueryResult:
        """Validate ``sql`` for the read path and execute it."""

        handle = self._require_connection()
        await self._dispatcher.before_query(QueryRequest(sql=sql, bindings=bindings, options=options))
        validation = validate_sql(sql)
        if not validation.valid:
            await self._reject(validation.error or "invalid query")
        try:
            result = await handle.execute(sql, bindings or [])
        except Exception as exc:
            LOG.error("Query failed", extra={"error": str(exc)})
            await self._dispatcher.on_error(exc)
            raise QueryExecutionError(f"Query failed: {exc}") from exc
        await self._dispatcher.after_query(result)
        return result

    async def execute_transaction(self, queries: Iterable[QueryRequest | Mapping[str, Any]]) -> list[QueryResult]:
        """Run every statement in one transaction; any failure rolls all of them back."""

        handle = self._require_connection()
        requests = [_as_request(entry) for entry in queries]
        results: list[QueryResult] = []
        try:
            async with handle.transaction() as trx:
                for index, request in enumerate(requests, start=1):
                    await self._dispatcher.before_query(request)
                    validation = validate_sql_for_transaction(request.sql or "")
                    if not validation.valid:
                        raise QueryRejectedError(validation.error or "invalid query")
                    try:
                        result = await trx.execute(request.sql or "", request.bindings or [])
                    except Exception as exc:
                        raise QueryExecutionError(f"Statement {index} failed: {exc}") from exc
                    results.append(result)
                    await self._dispatcher.after_query(result)
        except QueryRejectedError as exc:
            LOG.warning("Transaction rejected", extra={"reason": exc.reason})
            await self._dispatcher.on_error(exc)
            raise
        except QueryExecutionError as exc:
            LOG.error("Transaction failed", extra={"error": str(exc)})
            await self._dispatcher.on_error(exc.__cause__ or exc)
            raise
        except Exception as exc:
            LOG.error("Transaction failed", extra={"error": str(exc)})
            await self._dispatcher.on_error(exc)
            raise QueryExecutionError(f"Transaction failed: {exc}") from exc
        return results

    async def execute_select(
        self,
        table: str,
        conditions: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> QueryResult:
        """Build and run ``SELECT *`` over ``table`` with equality filters."""

        handle = self._require_connection()
        await self._dispatcher.before_query(QueryRequest(table=table, conditions=conditions, options=options))
        try:
            sql, bindings = build_select(table, conditions, options)
        except ValueError as exc:
            await self._reject(str(exc))
        try:
            result = await handle.execute(sql, bindings)
        except Exception as exc:
            LOG.error("Select failed", extra={"table": table, "error": str(exc)})
            await self._dispatcher.on_error(exc)
            raise QueryExecutionError(f"Select on '{table}' failed: {exc}") from exc
        await self._dispatcher.after_query(result)
        return result

    def _require_connection(self) -> PoolHandle:
        handle = self._connections.get_connection()
        if handle is None:
            raise NotConnectedError("Database connection is not active")
        return handle

    async def _reject(self, reason: str) -> None:
        rejection = QueryRejectedError(reason)
        LOG.warning("Query rejected", extra={"reason": reason})
        await self._dispatcher.on_error(rejection)
        raise rejection


def build_select(
    table: str,
    conditions: Mapping[str, Any] | None = None,
    options: Mapping[str, Any] | None = None,
) -> tuple[str, list[Any]]:
    """Return ``SELECT *`` SQL with ``?`` placeholders and its bindings.

    ``options`` accepts ``limit``, ``offset`` and ``orderBy`` (or ``order_by``)
    as ``{"field": ..., "direction": "asc" | "desc"}``; direction defaults to asc.
    """

    if not isinstance(table, str) or not table.strip():
        raise ValueError("Table name is required")
    query = exp.select("*").from_(_table(table))
    bindings: list[Any] = []
    for column, value in (conditions or {}).items():
        if value is None:
            query = query.where(exp.Is(this=_column(column), expression=exp.Null()))
        else:
            query = query.where(exp.EQ(this=_column(column), expression=exp.Placeholder()))
            bindings.append(value)

    opts = options or {}
    order_by = opts.get("orderBy", opts.get("order_by"))
    if order_by:
        if isinstance(order_by, str):
            field, direction = order_by, "asc"
        else:
            field = order_by.get("field")
            direction = str(order_by.get("direction") or "asc").lower()
        if not field:
            raise ValueError("orderBy requires a field")
        if direction not in ("asc", "desc"):
            raise ValueError(f"Invalid order direction: {direction}")
        descending = direction == "desc"
        query = query.order_by(exp.Ordered(this=_column(field), desc=descending, nulls_first=not descending))
    for name in ("limit", "offset"):
        value = opts.get(name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"{name} must be a non-negative integer")
        query = query.limit(value) if name == "limit" else query.offset(value)
    return query.sql(), bindings


def _table(name: str) -> exp.Table:
    parts = name.split(".")
    return exp.table_(parts[-1], db=parts[-2] if len(parts) > 1 else None, quoted=True)


def _column(name: str) -> exp.Column:
    return exp.column(name, quoted=True)


def _as_request(entry: QueryRequest | Mapping[str, Any]) -> QueryRequest:
    if isinstance(entry, QueryRequest):
        return entry
    return QueryRequest(sql=entry.get("sql"), bindings=entry.get("bindings"), options=entry.get("options"))


__all__ = [
    "QueryExecutionError",
    "QueryRejectedError",
    "QueryRequest",
    "QueryService",
    "build_select",
]
