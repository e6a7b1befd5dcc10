from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Callable, Iterator

log = logging.getLogger(__name__)

INVOICE_GENERATED = "invoice.generated"
INVOICE_SENT = "invoice.sent"
INVOICE_CANCELLED = "invoice.cancelled"
INVOICE_OVERDUE = "invoice.overdue"
PAYMENT_RECEIVED = "invoice.payment_received"
INVOICE_PAID = "invoice.paid"
WORK_ORDER_CREATED = "work_order.created"
WORK_ORDER_STATUS_CHANGED = "work_order.status_changed"
APPOINTMENT_BOOKED = "appointment.booked"
APPOINTMENT_CONFIRMED = "appointment.confirmed"

Listener = Callable[[str, dict[str, Any]], None]


class EventDispatcher:
    """Hands domain events to notification listeners.

    Inside ``deferred()`` events are buffered and only delivered when the
    block exits cleanly, so listeners never hear about work that was rolled
    back. Open it outside the database transaction. The buffer is per thread,
    so concurrent requests sharing one dispatcher never see each other's events.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._local = threading.local()

    def subscribe(self, name: str, listener: Listener) -> None:
        self._listeners[name].append(listener)

    def subscribe_all(self, listener: Listener) -> None:
        self._listeners["*"].append(listener)

    @property
    def _buffer(self) -> list[tuple[str, dict[str, Any]]] | None:
        return getattr(self._local, "buffer", None)

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        buffer = self._buffer
        if buffer is not None:
            buffer.append((name, payload))
            return
        self._deliver(name, payload)

    @contextmanager
    def deferred(self) -> Iterator[None]:
        outer = self._buffer
        pending: list[tuple[str, dict[str, Any]]] = []
        self._local.buffer = pending
        try:
            yield
        except Exception:
            self._local.buffer = outer
            if pending:
                log.debug("dropped %d pending event(s) after failure", len(pending))
            raise
        self._local.buffer = outer
        for name, payload in pending:
            self.emit(name, payload)

    def _deliver(self, name: str, payload: dict[str, Any]) -> None:
        log.info("event %s %s", name, payload)
        for listener in [*self._listeners.get(name, ()), *self._listeners.get("*", ())]:
            try:
                listener(name, payload)
            except Exception:
                # delivery is best effort; the billing change is already committed
                log.exception("listener %r failed for event %s", listener, name)
