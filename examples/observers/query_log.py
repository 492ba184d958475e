"""Sample observer recording lifecycle phases, used by manual and automated tests."""

from __future__ import annotations

import time
from typing import Any

from querycore.observers import ObserverBase


class QueryLogObserver(ObserverBase):
    """Keeps an in-memory journal of every phase it sees."""

    name = "query-log"
    version = "0.0.1"
    min_core = "0.1.0"

    def __init__(self) -> None:
        self.core: Any = None
        self.entries: list[tuple[str, float, Any]] = []
        self.destroyed = False

    async def init(self, core: Any) -> None:
        self.core = core
        self._record("init", None)

    async def before_connect(self, config: Any) -> None:
        self._record("before_connect", config)

    async def after_connect(self, handle: Any) -> None:
        self._record("after_connect", handle)

    async def before_query(self, request: Any) -> None:
        self._record("before_query", request)

    async def after_query(self, result: Any) -> None:
        self._record("after_query", result)

    async def before_disconnect(self) -> None:
        self._record("before_disconnect", None)

    async def on_error(self, error: BaseException) -> None:
        self._record("on_error", error)

    async def destroy(self) -> None:
        self.destroyed = True
        self._record("destroy", None)

    @property
    def phases(self) -> list[str]:
        return [phase for phase, _, _ in self.entries]

    def _record(self, phase: str, payload: Any) -> None:
        self.entries.append((phase, time.monotonic(), payload))
