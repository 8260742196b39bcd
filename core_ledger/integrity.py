"""
Ledger integrity monitor.

Once a post-commit check finds an invariant violated the monitor trips and
every later mutating operation is refused until an operator resets it.
Nothing is repaired automatically.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import threading

from .events import DomainEvent, EventDispatcher, EventPayload
from .exceptions import DataCorruptionError
from .logging_config import get_logger, log_action


class IntegrityMonitor:
    """Shared halt switch for all ledger engines"""

    def __init__(self, events: Optional[EventDispatcher] = None):
        self.events = events
        self.logger = get_logger("core_ledger.integrity")
        self._lock = threading.Lock()
        self._halted = False
        self.reason: Optional[str] = None
        self.context: Dict[str, Any] = {}
        self.halted_at: Optional[datetime] = None

    @property
    def halted(self) -> bool:
        return self._halted

    def check_open(self) -> None:
        """Raise DataCorruptionError if mutations are halted"""
        if self._halted:
            raise DataCorruptionError(self.reason)

    def trip(self, reason: str, **context: Any) -> DataCorruptionError:
        """
        Halt all mutations and report the violation.

        Returns the error for the caller to raise, so the failing operation
        surfaces the same reason the monitor recorded.
        """
        with self._lock:
            first = not self._halted
            if first:
                self._halted = True
                self.reason = reason
                self.context = dict(context)
                self.halted_at = datetime.now(timezone.utc)

        log_action(
            self.logger, "critical", f"Ledger halted: {reason}",
            action="ledger_halted",
            extra={k: str(v) for k, v in context.items()}
        )
        if first and self.events is not None:
            self.events.publish(EventPayload(
                event_type=DomainEvent.LEDGER_HALTED,
                entity_type="ledger",
                entity_id="ledger",
                data={"reason": reason, **{k: str(v) for k, v in context.items()}}
            ))
        return DataCorruptionError(reason, **context)

    def reset(self) -> None:
        """Operator action: allow mutations again"""
        with self._lock:
            previous = self.reason
            self._halted = False
            self.reason = None
            self.context = {}
            self.halted_at = None
        log_action(self.logger, "warning", "Ledger halt cleared by operator",
                   action="ledger_reset", extra={"previous_reason": previous})
