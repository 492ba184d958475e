"""Observer dispatch and discovery exports."""

from .dispatcher import HookDispatcher
from .loader import DiscoveredObserver, ObserverLoader
from .types import (
    HookPhase,
    LifecycleObserver,
    ObserverBase,
    ObserverCompatibilityError,
    ObserverError,
    RegisteredObserver,
    capabilities_of,
)

__all__ = [
    "DiscoveredObserver",
    "HookDispatcher",
    "HookPhase",
    "LifecycleObserver",
    "ObserverBase",
    "ObserverCompatibilityError",
    "ObserverError",
    "ObserverLoader",
    "RegisteredObserver",
    "capabilities_of",
]
