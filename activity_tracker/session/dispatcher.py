"""Executors for fire-and-forget persistence and broadcast calls."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
import threading
from typing import Any, Callable, Protocol

from ..config import BACKGROUND_MAX_WORKERS

__all__ = ["Dispatcher", "BackgroundDispatcher", "InlineDispatcher"]


class Dispatcher(Protocol):
    def submit(self, fn: Callable[..., Any], *args: Any) -> None: ...

    def shutdown(self) -> None: ...


class BackgroundDispatcher:
    """Run callables on a small thread pool without waiting for results.

    Callers are expected to handle their own failures; anything that still
    escapes is logged so a worker never dies silently. ``shutdown`` waits for
    queued work, after which further submissions are ignored.
    """

    def __init__(self, max_workers: int = BACKGROUND_MAX_WORKERS) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="tracker-bg"
        )
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        with self._lock:
            if self._closed:
                self._log.debug("Dispatcher closed; dropping %s", _name(fn))
                return
            self._executor.submit(self._run, fn, *args)

    def _run(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except Exception as exc:  # pragma: no cover - logging path
            self._log.error(
                "Background task %s failed: %s", _name(fn), exc, exc_info=True
            )

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)


class InlineDispatcher:
    """Run submissions immediately on the calling thread (replay and tests)."""

    def __init__(self) -> None:
        self._log = logging.getLogger(self.__class__.__name__)

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except Exception as exc:  # pragma: no cover - logging path
            self._log.error("Task %s failed: %s", _name(fn), exc, exc_info=True)

    def shutdown(self) -> None:
        return


def _name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__name__", repr(fn))
