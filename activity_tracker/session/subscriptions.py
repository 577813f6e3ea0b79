"""Location subscription and duration ticker managed as one resource."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Optional, Union

from ..errors import LocationError, TransientGpsError
from ..models import RawFix
from ..providers import LocationProvider, SubscribeOptions, classify_location_error

__all__ = ["Ticker", "ActiveSubscriptions"]


class Ticker:
    """Call ``on_tick`` every ``interval_s`` seconds on a daemon thread.

    ``pause``/``resume`` gate the callback without stopping the thread. Each
    resume restarts the interval, so time spent paused never shortens the
    next tick. ``stop`` ends the thread for good.
    """

    def __init__(
        self,
        interval_s: float,
        on_tick: Callable[[], None],
        *,
        name: str = "tracker-ticker",
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be greater than zero")
        self._log = logging.getLogger(self.__class__.__name__)
        self._interval_s = interval_s
        self._on_tick = on_tick
        self._cond = threading.Condition()
        self._running = False
        self._stopped = False
        # Bumped on every pause/resume so a pending wait starts over.
        self._generation = 0
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)

    def start(self) -> None:
        with self._cond:
            self._running = True
        self._thread.start()

    def pause(self) -> None:
        with self._cond:
            self._running = False
            self._generation += 1
            self._cond.notify_all()

    def resume(self) -> None:
        with self._cond:
            self._running = True
            self._generation += 1
            self._cond.notify_all()

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._running = False
            self._cond.notify_all()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._interval_s * 2)

    def _wait_for_tick(self) -> bool:
        """Block until a full interval has passed while running; False once stopped."""

        with self._cond:
            while not self._stopped:
                if not self._running:
                    self._cond.wait()
                    continue
                generation = self._generation
                deadline = time.monotonic() + self._interval_s
                remaining = self._interval_s
                while (
                    remaining > 0
                    and not self._stopped
                    and generation == self._generation
                ):
                    self._cond.wait(remaining)
                    remaining = deadline - time.monotonic()
                if remaining <= 0 and not self._stopped and generation == self._generation:
                    return True
            return False

    def _loop(self) -> None:
        while self._wait_for_tick():
            try:
                self._on_tick()
            except Exception as exc:  # pragma: no cover - logging path
                self._log.error("Tick callback failed: %s", exc, exc_info=True)


class _DrainMarker:
    __slots__ = ("event",)

    def __init__(self) -> None:
        self.event = threading.Event()


_STOP = object()
_QueueItem = Union[RawFix, LocationError, _DrainMarker, object]


class ActiveSubscriptions:
    """Scoped ownership of the location subscription and the ticker.

    Fixes and errors pushed by the provider are queued and consumed serially
    by one worker thread, so the session never processes two fixes at once.
    ``release`` is idempotent and safe to call from the worker thread itself.
    """

    def __init__(
        self,
        provider: LocationProvider,
        options: SubscribeOptions,
        *,
        on_fix: Callable[[RawFix], object],
        on_error: Callable[[LocationError], None],
        on_tick: Callable[[], None],
        tick_interval_s: Optional[float],
        name: str = "tracker",
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._provider = provider
        self._options = options
        self._on_fix = on_fix
        self._on_error = on_error
        self._queue: "queue.Queue[_QueueItem]" = queue.Queue()
        self._lock = threading.Lock()
        self._subscribed = False
        self._acquired = False
        self._released = False
        self._consumer = threading.Thread(
            target=self._consume, name=f"{name}-fixes", daemon=True
        )
        self._ticker = (
            Ticker(tick_interval_s, on_tick, name=f"{name}-ticker")
            if tick_interval_s
            else None
        )

    def __enter__(self) -> "ActiveSubscriptions":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    @property
    def subscribed(self) -> bool:
        with self._lock:
            return self._subscribed

    def acquire(self) -> None:
        with self._lock:
            if self._acquired:
                return
            self._acquired = True
        self._consumer.start()
        if self._ticker is not None:
            self._ticker.start()
        try:
            self._subscribe()
        except TransientGpsError:
            # Keep the consumer and ticker; the caller may subscribe again later.
            raise
        except BaseException:
            self.release()
            raise

    def suspend(self) -> None:
        if self._ticker is not None:
            self._ticker.pause()
        self._unsubscribe()

    def resume(self) -> None:
        with self._lock:
            if self._released:
                return
        if self._ticker is not None:
            self._ticker.resume()
        self._subscribe()

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            started = self._acquired
        self._unsubscribe()
        if self._ticker is not None and started:
            self._ticker.stop()
        if started:
            self._queue.put(_STOP)
            if self._consumer is not threading.current_thread():
                self._consumer.join()
        self._log.debug("Subscriptions released")

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Block until every item queued so far has been processed."""

        with self._lock:
            if not self._acquired:
                return True
            released = self._released
        if released:
            # Released from the worker itself; wait for it to finish the item.
            if self._consumer is threading.current_thread():
                return True
            self._consumer.join(timeout)
            return not self._consumer.is_alive()
        marker = _DrainMarker()
        self._queue.put(marker)
        return marker.event.wait(timeout)

    def _subscribe(self) -> None:
        with self._lock:
            if self._subscribed:
                return
        try:
            self._provider.subscribe(self._options, self._enqueue_fix, self._enqueue_error)
        except LocationError:
            raise
        except Exception as exc:
            raise classify_location_error(exc) from exc
        with self._lock:
            self._subscribed = True

    def _unsubscribe(self) -> None:
        with self._lock:
            if not self._subscribed:
                return
            self._subscribed = False
        try:
            self._provider.unsubscribe()
        except Exception as exc:
            self._log.warning("Location unsubscribe failed: %s", exc, exc_info=True)

    def _enqueue_fix(self, fix: RawFix) -> None:
        self._queue.put(fix)

    def _enqueue_error(self, error: BaseException) -> None:
        self._queue.put(classify_location_error(error))

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            if isinstance(item, _DrainMarker):
                item.event.set()
                continue
            try:
                if isinstance(item, LocationError):
                    self._on_error(item)
                elif isinstance(item, RawFix):
                    self._on_fix(item)
            except Exception as exc:  # pragma: no cover - logging path
                self._log.error("Fix processing failed: %s", exc, exc_info=True)
        # Unblock anyone still waiting on a drain marker.
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if isinstance(item, _DrainMarker):
                item.event.set()
