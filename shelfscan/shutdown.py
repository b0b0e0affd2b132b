"""Stop the scheduler loop cleanly on SIGINT/SIGTERM.

The loop sleeps on the shutdown event between passes, so a signal wakes it
immediately and it exits before starting another pass. A pass already in
flight is not interrupted; every store write is atomic anyway.
"""

import signal
import sys
import threading
from typing import Any, Dict, Optional

from shelfscan.logging_config import get_logger

__all__ = ["ShutdownHandler", "get_shutdown_handler"]

logger = get_logger("shutdown")

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Shutdown flag shared by the scheduler and the signal handlers.

    Usage:
        handler = get_shutdown_handler().install()
        while not handler.shutdown_requested:
            scheduler.run_pass()
            handler.wait(60)
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._previous: Dict[int, Any] = {}

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    def install(self) -> "ShutdownHandler":
        """Route SIGINT/SIGTERM to this handler.

        Signal handlers can only be set from the main thread; when the
        scheduler is embedded in another thread this is a no-op and the
        embedding code calls ``request_shutdown`` itself.
        """
        if self.installed:
            return self
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Not in the main thread, signal handlers not installed")
            return self

        for signum in STOP_SIGNALS:
            self._previous[signum] = signal.signal(signum, self._on_signal)
        return self

    def uninstall(self) -> None:
        """Put back whatever handlers were active before ``install``."""
        for signum, previous in self._previous.items():
            if previous is not None:
                signal.signal(signum, previous)
        self._previous.clear()

    def _on_signal(self, signum: int, frame: Any) -> None:
        # State changes come before any logging; handlers may wait on the store lock.
        name = signal.Signals(signum).name
        if self._event.is_set():
            sys.stderr.write(f"Received {name} again, exiting without waiting for the pass\n")
            sys.exit(1)
        self._event.set()
        logger.warning(f"Received {name}, stopping after the current pass "
                       "(send again to force quit)")

    def request_shutdown(self) -> None:
        self._event.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on shutdown.

        Returns:
            True if shutdown was requested
        """
        return self._event.wait(timeout)

    def reset(self) -> None:
        """Clear the flag so the loop can be started again."""
        self._event.clear()


_handler: Optional[ShutdownHandler] = None
_handler_lock = threading.Lock()


def get_shutdown_handler() -> ShutdownHandler:
    """Return the process-wide shutdown handler."""
    global _handler
    with _handler_lock:
        if _handler is None:
            _handler = ShutdownHandler()
        return _handler
