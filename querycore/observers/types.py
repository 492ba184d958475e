"""Observer contract primitives shared between the dispatcher and loader."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

ObserverCallback = Callable[..., Awaitable[None] | None]


class HookPhase(str, Enum):
    """Lifecycle phases an observer may subscribe to, named after its methods."""

    INIT = "init"
    BEFORE_CONNECT = "before_connect"
    AFTER_CONNECT = "after_connect"
    BEFORE_QUERY = "before_query"
    AFTER_QUERY = "after_query"
    BEFORE_DISCONNECT = "before_disconnect"
    ON_ERROR = "on_error"
    DESTROY = "destroy"


@runtime_checkable
class LifecycleObserver(Protocol):
    """Contract implemented by observers.

    Only ``init`` is required. Any of ``before_connect``, ``after_connect``,
    ``before_query``, ``after_query``, ``before_disconnect``, ``on_error`` and
    ``destroy`` may be provided as plain or ``async`` methods.
    """

    def init(self, core: Any) -> Awaitable[None] | None: ...


class ObserverBase:
    """Convenience base class with no-op implementations for every phase."""

    name: str = "observer"
    version: str = "0.0.0"
    min_core: str = "0.0.0"

    async def init(self, core: Any) -> None:
        return None

    async def before_connect(self, config: Any) -> None:
        return None

    async def after_connect(self, handle: Any) -> None:
        return None

    async def before_query(self, request: Any) -> None:
        return None

    async def after_query(self, result: Any) -> None:
        return None

    async def before_disconnect(self) -> None:
        return None

    async def on_error(self, error: BaseException) -> None:
        return None

    async def destroy(self) -> None:
        return None


def capabilities_of(observer: object) -> frozenset[HookPhase]:
    """Return the phases ``observer`` implements."""

    return frozenset(phase for phase in HookPhase if callable(getattr(observer, phase.value, None)))


@dataclass(frozen=True, slots=True)
class RegisteredObserver:
    """An observer accepted by the dispatcher together with its capabilities."""

    name: str
    version: str
    observer: Any
    capabilities: frozenset[HookPhase]

    def supports(self, phase: HookPhase) -> bool:
        return phase in self.capabilities


class ObserverError(RuntimeError):
    """Base error for observer registration and loading failures."""


class ObserverCompatibilityError(ObserverError):
    """Raised when an observer does not satisfy the minimum core version."""


__all__ = [
    "HookPhase",
    "LifecycleObserver",
    "ObserverBase",
    "ObserverCallback",
    "ObserverCompatibilityError",
    "ObserverError",
    "RegisteredObserver",
    "capabilities_of",
]
