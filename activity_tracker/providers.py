"""Location provider contract and a replay implementation."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Callable, Iterable, List, Optional, Protocol, Union

from .config import LOCATION_HIGH_ACCURACY, LOCATION_MAX_FIX_AGE_MS, LOCATION_TIMEOUT_MS
from .errors import LocationError, PermissionDeniedError, TransientGpsError
from .models import RawFix

__all__ = [
    "SubscribeOptions",
    "FixCallback",
    "ErrorCallback",
    "LocationProvider",
    "ReplayLocationProvider",
    "classify_location_error",
]

FixCallback = Callable[[RawFix], None]
ErrorCallback = Callable[[LocationError], None]
ReplayItem = Union[RawFix, BaseException]


@dataclass(frozen=True, slots=True)
class SubscribeOptions:
    high_accuracy: bool = field(default_factory=lambda: LOCATION_HIGH_ACCURACY)
    max_fix_age_ms: int = field(default_factory=lambda: LOCATION_MAX_FIX_AGE_MS)
    timeout_ms: int = field(default_factory=lambda: LOCATION_TIMEOUT_MS)


class LocationProvider(Protocol):
    """Continuous position updates from the device.

    Implementations call ``on_fix`` for every new fix and ``on_error`` for
    failures, from any thread, until ``unsubscribe`` returns.
    """

    def subscribe(
        self,
        options: SubscribeOptions,
        on_fix: FixCallback,
        on_error: ErrorCallback,
    ) -> None: ...

    def unsubscribe(self) -> None: ...


def classify_location_error(exc: BaseException) -> LocationError:
    """Map any provider failure onto the two location error kinds.

    Builtin ``PermissionError`` is treated as a denied permission; every other
    failure is considered transient.
    """

    if isinstance(exc, LocationError):
        return exc
    if isinstance(exc, PermissionError):
        error: LocationError = PermissionDeniedError(str(exc) or "Location permission denied")
    else:
        error = TransientGpsError(str(exc) or type(exc).__name__)
    error.__cause__ = exc
    return error


class ReplayLocationProvider:
    """Deliver a recorded sequence of fixes and errors on demand.

    Items are only delivered while subscribed; a paused session therefore
    leaves the remaining items queued and picks them up after resuming.
    """

    def __init__(self, items: Iterable[ReplayItem] = ()) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._lock = threading.RLock()
        self._pending: List[ReplayItem] = list(items)
        self._on_fix: Optional[FixCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self.options: Optional[SubscribeOptions] = None
        self.subscribe_count = 0
        self.unsubscribe_count = 0

    @property
    def subscribed(self) -> bool:
        with self._lock:
            return self._on_fix is not None

    @property
    def remaining(self) -> int:
        with self._lock:
            return len(self._pending)

    def subscribe(
        self,
        options: SubscribeOptions,
        on_fix: FixCallback,
        on_error: ErrorCallback,
    ) -> None:
        with self._lock:
            self.options = options
            self._on_fix = on_fix
            self._on_error = on_error
            self.subscribe_count += 1

    def unsubscribe(self) -> None:
        with self._lock:
            if self._on_fix is not None:
                self.unsubscribe_count += 1
            self._on_fix = None
            self._on_error = None

    def queue(self, item: ReplayItem) -> None:
        with self._lock:
            self._pending.append(item)

    def push(self, item: ReplayItem) -> bool:
        """Deliver ``item`` now; returns False when nobody is subscribed."""

        with self._lock:
            on_fix, on_error = self._on_fix, self._on_error
        if on_fix is None or on_error is None:
            self._log.debug("Not subscribed; dropping %r", item)
            return False
        if isinstance(item, RawFix):
            on_fix(item)
        else:
            on_error(classify_location_error(item))
        return True

    def play(self, limit: int | None = None) -> int:
        """Deliver queued items in order until paused, exhausted or ``limit``."""

        delivered = 0
        while limit is None or delivered < limit:
            with self._lock:
                if not self._pending or self._on_fix is None:
                    break
                item = self._pending.pop(0)
            if not self.push(item):
                with self._lock:
                    self._pending.insert(0, item)
                break
            delivered += 1
        return delivered
