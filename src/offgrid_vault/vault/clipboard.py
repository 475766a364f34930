# Vault - Clipboard Clearing
#
# After a secret is copied, clear the clipboard once the configured
# timeout elapses. Best effort: a failing clear is logged, never raised.

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ClipboardClearer:
    """Holds at most one pending clear; scheduling again replaces it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self, clear_fn: Callable[[], None], seconds: float) -> bool:
        """Run clear_fn after ``seconds``. Returns False if clearing is disabled (0)."""
        with self._lock:
            self._cancel()
            if seconds <= 0:
                return False
            timer = threading.Timer(seconds, self._run, args=(clear_fn,))
            timer.daemon = True
            self._timer = timer
            timer.start()
            return True

    def _run(self, clear_fn: Callable[[], None]) -> None:
        with self._lock:
            self._timer = None
        try:
            clear_fn()
        except Exception:
            logger.warning("Clipboard clear failed", exc_info=True)

    def cancel(self) -> None:
        with self._lock:
            self._cancel()

    def _cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
