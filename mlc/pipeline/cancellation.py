import logging
import threading
from typing import Optional

from mlc.domain.events import CancelRequested
from mlc.infrastructure.event_bus import EventBus

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation shared by the controller, scheduler and workers.

    Workers poll `is_cancelled`; blocking waits can use `wait()`. Once cancelled
    the token stays cancelled.

    `cancel()` only records the reason and sets an event, so it is safe to call
    from a signal handler. Announcing the cancellation (events, console output)
    is left to whoever polls the token, via `claim_report()`.
    """

    def __init__(self):
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._report_lock = threading.Lock()
        self._reported = False

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "interrupted") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def claim_report(self) -> bool:
        """True for exactly one caller once the token is cancelled.

        Never call this from a signal handler.
        """
        if not self._event.is_set():
            return False
        with self._report_lock:
            if self._reported:
                return False
            self._reported = True
            return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


def report_cancellation(token: CancellationToken, event_bus: EventBus) -> bool:
    """Publishes CancelRequested once per token. Returns True if it published."""
    if not token.claim_report():
        return False
    reason = token.reason or "interrupted"
    logger.info(f"Cancellation requested ({reason}) - stopping new dispatch")
    event_bus.publish(CancelRequested(reason=reason))
    return True
