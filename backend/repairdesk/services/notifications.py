from __future__ import annotations
"""Best-effort lifecycle notifications.

Services queue events on a NotificationOutbox while the unit of work runs; the
``atomic`` decorator dispatches them only after the transaction commits and drops
them on rollback. A failing notifier is logged and never propagates.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

EVENT_TICKET_CREATED = 'ticket_created'
EVENT_BUDGET_QUOTED = 'budget_quoted'
EVENT_READY_FOR_PICKUP = 'ready_for_pickup'


class Notifier(Protocol):
    def notify(self, event: str, payload: Dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Default notifier: records the event in the application log."""

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info('notification %s %s', event, payload)


class NotificationOutbox:
    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()
        self._pending: List[Tuple[str, Dict[str, Any]]] = []

    def queue(self, event: str, payload: Dict[str, Any]):
        self._pending.append((event, dict(payload)))

    @property
    def pending(self) -> List[Tuple[str, Dict[str, Any]]]:
        return list(self._pending)

    def clear(self):
        self._pending.clear()

    def dispatch(self) -> int:
        """Send queued events; returns how many were delivered without error."""
        pending, self._pending = self._pending, []
        delivered = 0
        for event, payload in pending:
            try:
                self.notifier.notify(event, payload)
                delivered += 1
            except Exception:
                logger.exception('notification %s failed for %s', event, payload.get('ticket_code'))
        return delivered
