"""Cooperative interruption of workflow runs.

Runs are never torn down mid-step. Instead, an InterruptToken is set (by a
signal handler or by an embedding application) and the orchestrator checks
it before each step, records the current resume pointer, and stops.
"""

import logging
import signal
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class InterruptToken:
    """Thread-safe flag polled by the orchestrator at step boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def set(self, reason: str = "interrupt") -> None:
        self.reason = reason
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def clear(self) -> None:
        self.reason = None
        self._event.clear()


_process_token: Optional[InterruptToken] = None
_install_lock = threading.Lock()


def install_interrupt_handler() -> InterruptToken:
    """Route SIGINT to a process-wide InterruptToken.

    Installs the handler on the first call only; later calls return the same
    token. A second SIGINT while the token is already set falls through to
    the default handler so a stuck step can still be killed from the
    terminal.
    """
    global _process_token
    with _install_lock:
        if _process_token is not None:
            return _process_token

        token = InterruptToken()

        def _on_sigint(signum, frame):
            if token.is_set():
                signal.default_int_handler(signum, frame)
            logger.warning("Interrupt received; stopping after the current step")
            token.set("SIGINT")

        try:
            signal.signal(signal.SIGINT, _on_sigint)
        except ValueError:
            # Not the main thread: the token still works when set directly
            logger.debug("SIGINT handler not installed outside the main thread")

        _process_token = token
        return token
