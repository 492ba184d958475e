"""Entry point discovery for packaged observers."""

from __future__ import annotations

import importlib.metadata as metadata
import inspect
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from querycore import __version__ as CORE_VERSION

from .dispatcher import HookDispatcher
from .types import ObserverCompatibilityError, ObserverError, RegisteredObserver

LOG = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "querycore.observers"


def _parse_version(value: str) -> tuple[int, int, int]:
    """Parse a dotted string into a comparable tuple."""

    parts = value.split(".")
    ints: list[int] = []
    for chunk in parts[:3]:
        try:
            ints.append(int(chunk))
        except ValueError:
            ints.append(0)
    while len(ints) < 3:
        ints.append(0)
    return ints[0], ints[1], ints[2]


@dataclass(slots=True, frozen=True)
class DiscoveredObserver:
    """Metadata captured from entry point discovery."""

    name: str
    version: str
    min_core: str
    entry_point: metadata.EntryPoint
    observer: object


class ObserverLoader:
    """Discovers observers exposed via entry points and registers them."""

    def __init__(
        self,
        dispatcher: HookDispatcher,
        *,
        core_version: str = CORE_VERSION,
        entry_point_group: str = ENTRY_POINT_GROUP,
        enabled_observers: Iterable[str] | None = None,
        builtin_observers: Iterable[object] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._core_version = core_version
        self._entry_point_group = entry_point_group
        self._enabled: set[str] | None = set(enabled_observers) if enabled_observers is not None else None
        self._builtin_observers = list(builtin_observers or [])
        self._discovered: list[DiscoveredObserver] = []
        self._loaded: dict[str, RegisteredObserver] = {}

    def discover(self) -> list[DiscoveredObserver]:
        """Enumerate observers from entry points, then builtins not already found."""

        group = metadata.entry_points().select(group=self._entry_point_group)
        discovered: dict[str, DiscoveredObserver] = {}
        for entry_point in sorted(group, key=lambda ep: ep.name):
            observer = _instantiate(entry_point.load())
            found = self._describe(observer, entry_point)
            discovered[found.name] = found
        for builtin in self._builtin_observers:
            observer = _instantiate(builtin)
            entry_point = metadata.EntryPoint(
                name=_name_of(observer),
                value=f"{type(observer).__module__}:{type(observer).__qualname__}",
                group=self._entry_point_group,
            )
            found = self._describe(observer, entry_point)
            discovered.setdefault(found.name, found)
        self._discovered = list(discovered.values())
        return self._discovered

    def load(self) -> list[RegisteredObserver]:
        """Register enabled, compatible observers with the dispatcher."""

        if not self._discovered:
            self.discover()

        loaded: list[RegisteredObserver] = []
        for found in self._discovered:
            if found.name in self._loaded:
                continue
            if self._enabled is not None and found.name not in self._enabled:
                LOG.debug("Skipping disabled observer", extra={"observer": found.name})
                continue
            try:
                self._ensure_compatible(found)
            except ObserverCompatibilityError as exc:
                LOG.warning(
                    "Skipping observer due to min_core mismatch",
                    extra={"observer": found.name, "min_core": found.min_core},
                )
                LOG.debug(str(exc))
                continue
            try:
                registered = self._dispatcher.register(found.observer)
            except ObserverError:
                LOG.exception("Observer registration failed", extra={"observer": found.name})
                raise
            self._loaded[found.name] = registered
            loaded.append(registered)
        return loaded

    async def shutdown(self) -> None:
        """Run the ``destroy`` phase on every registered observer."""

        await self._dispatcher.destroy()

    @property
    def loaded(self) -> Sequence[RegisteredObserver]:
        return tuple(self._loaded.values())

    def _describe(self, observer: object, entry_point: metadata.EntryPoint) -> DiscoveredObserver:
        return DiscoveredObserver(
            name=_name_of(observer),
            version=str(getattr(observer, "version", "0.0.0")),
            min_core=str(getattr(observer, "min_core", "0.0.0")),
            entry_point=entry_point,
            observer=observer,
        )

    def _ensure_compatible(self, found: DiscoveredObserver) -> None:
        core = _parse_version(self._core_version)
        minimum = _parse_version(found.min_core)
        if core < minimum:
            raise ObserverCompatibilityError(
                f"Observer '{found.name}' requires core>={found.min_core}, found {self._core_version}"
            )


def _instantiate(obj: object) -> object:
    if inspect.isclass(obj):
        return obj()
    return obj


def _name_of(observer: object) -> str:
    return str(getattr(observer, "name", None) or type(observer).__name__)


__all__ = ["DiscoveredObserver", "ENTRY_POINT_GROUP", "ObserverLoader"]
