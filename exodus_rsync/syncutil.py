"""Cancellation and bounded-parallelism helpers."""

from __future__ import annotations

import threading
from typing import Callable


class Cancelled(Exception):
    """Raised when an operation notices that its token was cancelled."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class CancelToken:
    """A cancellation flag; cancelling a token also cancels its children."""

    def __init__(self, parent: CancelToken | None = None) -> None:
        self._event = threading.Event()
        self._children: list[CancelToken] = []
        self._lock = threading.Lock()
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: CancelToken) -> None:
        with self._lock:
            self._children.append(child)
            already = self._event.is_set()
        if already:
            child.cancel()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Cancel this token and every token derived from it."""
        with self._lock:
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()

    def wait(self, timeout: float | None) -> bool:
        """Block until cancelled or ``timeout`` elapses; return whether cancelled."""
        return self._event.wait(timeout)


def run_with_group(n: int, fn: Callable[[], None], close: Callable[[], None]) -> None:
    """Run ``fn`` in ``n`` threads, wait for all of them, then run ``close``.

    If any ``fn`` raised, the first such exception is re-raised after ``close``.
    """
    errors: list[BaseException] = []
    lock = threading.Lock()

    def runner() -> None:
        try:
            fn()
        except BaseException as exc:
            with lock:
                errors.append(exc)

    threads = [threading.Thread(target=runner, daemon=True) for _ in range(n)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    close()
    if errors:
        raise errors[0]