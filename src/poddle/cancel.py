"""Per-request cancellation scopes and in-flight request tracking.

A ``CancelScope`` is created for every proxied request. Resources that can
block the request (the upstream response, the encoder process, the client
socket) register a cleanup callback on it; cancelling the scope runs those
callbacks once, which unblocks whatever copy is in progress.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Set

from .exceptions import RequestCancelled

logger = logging.getLogger(__name__)


def _noop() -> None:
    return None


class CancelScope:
    """Cancellation handle with registered cleanup callbacks."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` to run on cancellation.

        If the scope is already cancelled the callback runs immediately.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            if not self._cancelled.is_set():
                key = next(self._ids)
                self._callbacks[key] = callback

                def remove() -> None:
                    with self._lock:
                        self._callbacks.pop(key, None)

                return remove
        self._run(callback)
        return _noop

    def cancel(self) -> None:
        """Cancel the scope and run every registered callback exactly once."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        logger.debug("Cancelling %s (%d cleanup callbacks)", self.name or "scope", len(callbacks))
        for callback in callbacks:
            self._run(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise RequestCancelled()

    def _run(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:  # noqa: BLE001
            logger.warning("Cleanup callback for %s failed", self.name or "scope", exc_info=True)


class InflightRequests:
    """Registry of the CancelScopes of requests currently being served."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._scopes: Set[CancelScope] = set()

    def __len__(self) -> int:
        with self._cond:
            return len(self._scopes)

    @contextmanager
    def track(self, name: str = "") -> Iterator[CancelScope]:
        """Create a scope for one request and track it until the block exits."""
        scope = CancelScope(name)
        with self._cond:
            self._scopes.add(scope)
        try:
            yield scope
        finally:
            with self._cond:
                self._scopes.discard(scope)
                self._cond.notify_all()

    def wait_idle(self, timeout: Optional[float]) -> bool:
        """Wait until no request is in flight.

        Returns:
            True if idle, False if the timeout elapsed first
        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._scopes, timeout)

    def cancel_all(self, timeout: Optional[float] = None) -> int:
        """Cancel every in-flight request; returns how many were cancelled.

        Scopes are cancelled on their own threads so that a slow cleanup
        callback of one request does not hold up the others.

        Args:
            timeout: Upper bound on waiting for the callbacks; None waits
                until all of them returned
        """
        with self._cond:
            scopes = list(self._scopes)
        threads = [
            threading.Thread(target=scope.cancel, name=f"cancel-{scope.name}", daemon=True)
            for scope in scopes
        ]
        for thread in threads:
            thread.start()
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            thread.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
        pending = sum(1 for thread in threads if thread.is_alive())
        if pending:
            logger.warning("%d cancellations still running after %.1fs", pending, timeout)
        return len(scopes)
