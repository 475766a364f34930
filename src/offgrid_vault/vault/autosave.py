# Vault - Debounced Auto-Save
#
# Coalesces bursts of mutations into one save call:
#   - schedule() replaces the pending payload and restarts the timer
#   - at most one save is in flight; a payload scheduled during a save
#     runs right after it
#   - a failed save sets status "error" and keeps its payload pending;
#     it is not retried until the next schedule() or flush()
#
# Status transitions are published to subscribers outside the lock.

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

from .models import VaultPayload, now_ms

logger = logging.getLogger(__name__)

DEFAULT_DELAY_MS = 500


class SaveStatus(str, Enum):
    SAVED = "saved"
    PENDING = "pending"
    SAVING = "saving"
    ERROR = "error"


StatusCallback = Callable[[SaveStatus], None]


class AutoSaveScheduler:
    """
    Debounced saver for the file backend.

    Args:
        save_fn: Persists one payload; raises on failure.
        delay_ms: Default debounce window in milliseconds.
    """

    def __init__(self, save_fn: Callable[[VaultPayload], None], delay_ms: int = DEFAULT_DELAY_MS):
        self._save_fn = save_fn
        self.delay_ms = delay_ms
        self._cond = threading.Condition(threading.RLock())
        self._pending: Optional[VaultPayload] = None
        self._timer: Optional[threading.Timer] = None
        self._saving = False
        self._queued = False
        self._status = SaveStatus.SAVED
        self._last_saved_at: Optional[int] = None
        self._last_error: Optional[str] = None
        self._subscribers: List[StatusCallback] = []

    # ── Observers ────────────────────────────────────────────────────

    def subscribe(self, callback: StatusCallback) -> None:
        with self._cond:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: StatusCallback) -> None:
        with self._cond:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

    def _publish(self, status: SaveStatus) -> None:
        with self._cond:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(status)
            except Exception:
                logger.debug("Save status subscriber failed", exc_info=True)

    def _set_status(self, status: SaveStatus) -> SaveStatus:
        self._status = status
        return status

    # ── Accessors ────────────────────────────────────────────────────

    @property
    def status(self) -> SaveStatus:
        return self._status

    @property
    def last_saved_at(self) -> Optional[int]:
        return self._last_saved_at

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def has_pending(self) -> bool:
        with self._cond:
            return self._pending is not None

    # ── Scheduling ───────────────────────────────────────────────────

    def schedule(self, payload: VaultPayload, delay_ms: Optional[int] = None) -> None:
        """Replace the pending payload and restart the debounce timer."""
        delay = self.delay_ms if delay_ms is None else delay_ms
        with self._cond:
            self._pending = payload
            self._cancel_timer()
            if self._saving:
                # Runs as soon as the in-flight save completes
                self._queued = True
                return
            self._timer = threading.Timer(max(delay, 0) / 1000.0, self._drain)
            self._timer.daemon = True
            self._timer.start()
            status = self._set_status(SaveStatus.PENDING)
        self._publish(status)

    def hold(self, payload: VaultPayload) -> None:
        """Record a pending payload without a timer (auto-save disabled)."""
        with self._cond:
            self._pending = payload
            self._cancel_timer()
            if self._saving:
                return
            status = self._set_status(SaveStatus.PENDING)
        self._publish(status)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _drain(self) -> bool:
        """Save pending payloads until none is queued. Returns the last outcome."""
        ok = True
        while True:
            with self._cond:
                if self._saving or self._pending is None:
                    return ok
                payload = self._pending
                self._pending = None
                self._queued = False
                self._timer = None
                self._saving = True
                status = self._set_status(SaveStatus.SAVING)
            self._publish(status)

            try:
                self._save_fn(payload)
                ok = True
                error = None
            except Exception as exc:
                ok = False
                error = str(exc)
                logger.error("Auto-save failed: %s", exc)

            with self._cond:
                self._saving = False
                if ok:
                    self._last_saved_at = now_ms()
                    self._last_error = None
                    status = self._set_status(SaveStatus.SAVED)
                else:
                    self._last_error = error
                    if self._pending is None:
                        self._pending = payload
                    status = self._set_status(SaveStatus.ERROR)
                run_again = self._queued
                self._queued = False
                self._cond.notify_all()
            self._publish(status)
            if not run_again:
                return ok

    def flush(self) -> bool:
        """
        Save any pending payload now, on the calling thread.

        Waits for an in-flight save first. Returns False if the final
        save failed.
        """
        with self._cond:
            self._cancel_timer()
            while self._saving:
                self._cond.wait()
            if self._pending is None:
                return self._status != SaveStatus.ERROR
        self._drain()
        with self._cond:
            while self._saving:
                self._cond.wait()
            return self._status != SaveStatus.ERROR

    def cancel(self) -> None:
        """Drop the pending payload and timer without saving."""
        with self._cond:
            self._cancel_timer()
            self._pending = None
            self._queued = False
