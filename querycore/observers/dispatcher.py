"""Ordered, sequential dispatch of lifecycle hooks to registered observers."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Iterable, Sequence

from .types import HookPhase, LifecycleObserver, ObserverCallback, ObserverError, RegisteredObserver, capabilities_of

LOG = logging.getLogger(__name__)


class HookDispatcher:
    """Keeps observers in registration order and fans lifecycle phases out to them.

    Observer exceptions are not caught here: a failing callback stops the
    remaining dispatch for that phase and propagates to the caller.
    """

    def __init__(self) -> None:
        self._observers: list[RegisteredObserver] = []

    def register(self, observer: LifecycleObserver) -> RegisteredObserver:
        """Register an observer; it must implement ``init``."""

        capabilities = capabilities_of(observer)
        name = str(getattr(observer, "name", None) or type(observer).__name__)
        if not isinstance(observer, LifecycleObserver) or HookPhase.INIT not in capabilities:
            raise ObserverError(f"Observer '{name}' must implement init()")
        registered = RegisteredObserver(
            name=name,
            version=str(getattr(observer, "version", None) or "0.0.0"),
            observer=observer,
            capabilities=capabilities,
        )
        self._observers.append(registered)
        LOG.debug(
            "Registered observer",
            extra={"observer": registered.name, "phases": sorted(phase.value for phase in capabilities)},
        )
        return registered

    def register_many(self, observers: Iterable[LifecycleObserver]) -> list[RegisteredObserver]:
        return [self.register(observer) for observer in observers]

    @property
    def observers(self) -> Sequence[RegisteredObserver]:
        """Registered observers in execution order."""

        return tuple(self._observers)

    def supports(self, name: str, phase: HookPhase) -> bool:
        return any(entry.name == name and entry.supports(phase) for entry in self._observers)

    def __len__(self) -> int:
        return len(self._observers)

    async def dispatch(self, phase: HookPhase, *args: Any) -> None:
        """Invoke ``phase`` on every observer that implements it, in order."""

        for entry in tuple(self._observers):
            if not entry.supports(phase):
                continue
            callback: ObserverCallback = getattr(entry.observer, phase.value)
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

    async def init(self, core: Any) -> None:
        await self.dispatch(HookPhase.INIT, core)

    async def before_connect(self, config: Any) -> None:
        await self.dispatch(HookPhase.BEFORE_CONNECT, config)

    async def after_connect(self, handle: Any) -> None:
        await self.dispatch(HookPhase.AFTER_CONNECT, handle)

    async def before_query(self, request: Any) -> None:
        await self.dispatch(HookPhase.BEFORE_QUERY, request)

    async def after_query(self, result: Any) -> None:
        await self.dispatch(HookPhase.AFTER_QUERY, result)

    async def before_disconnect(self) -> None:
        await self.dispatch(HookPhase.BEFORE_DISCONNECT)

    async def on_error(self, error: BaseException) -> None:
        await self.dispatch(HookPhase.ON_ERROR, error)

    async def destroy(self) -> None:
        await self.dispatch(HookPhase.DESTROY)


__all__ = ["HookDispatcher"]
