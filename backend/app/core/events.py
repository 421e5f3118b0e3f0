"""
In-process event feed

Background services publish notifications here (stock_updated, new-invoice,
invoices-updated). The frontend polls GET /api/v1/siigo/events to pick them up.

Author: Equipo Gestión de Pedidos
Date: 2025-09-02
"""
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventPublisher:
    """Thread-safe bounded buffer of recent events plus optional listeners"""

    def __init__(self, max_events: int = 200):
        self._events = deque(maxlen=max_events)
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []
        self._lock = threading.Lock()
        self._sequence = 0

    def subscribe(self, listener: Callable[[Dict[str, Any]], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def publish(self, event_type: str, payload: Optional[Dict[str, Any]] = None,
                channel: Optional[str] = None) -> Dict[str, Any]:
        """
        Record an event and notify listeners.

        Args:
            event_type: e.g. 'stock_updated', 'invoices-updated'
            payload: event body
            channel: optional room name ('siigo-updates', 'orders-updates')

        Returns:
            The stored event
        """
        with self._lock:
            self._sequence += 1
            event = {
                "id": self._sequence,
                "type": event_type,
                "channel": channel,
                "data": payload or {},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            self._events.append(event)
            listeners = list(self._listeners)

        logger.info(f"Event {event_type} published ({channel or 'global'})")

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed for {event_type}: {e}")

        return event

    def recent(self, since_id: int = 0, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Events newer than since_id, optionally filtered by type"""
        with self._lock:
            events = list(self._events)
        return [
            e for e in events
            if e["id"] > since_id and (event_type is None or e["type"] == event_type)
        ]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


event_publisher = EventPublisher()
