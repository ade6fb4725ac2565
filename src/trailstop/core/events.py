# file: trailstop/core/events.py

"""
Domain events.

The engine and the backtester append events to an EventLog instead of
pushing callbacks; callers read (or drain) the log whenever they like.
"""

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional


class EventBase:
    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)  # type: ignore[arg-type]
        d["type"] = self.__class__.__name__
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass(frozen=True)
class PositionOpened(EventBase):
    time: datetime
    symbol: str
    entry_price: float
    quantity: float
    stop_price: float


@dataclass(frozen=True)
class StopUpdated(EventBase):
    time: datetime
    symbol: str
    old_stop: float
    new_stop: float
    stop_order_id: Optional[str] = None


@dataclass(frozen=True)
class StopTriggered(EventBase):
    time: datetime
    symbol: str
    stop_price: float
    low: float


@dataclass(frozen=True)
class PositionClosed(EventBase):
    time: datetime
    symbol: str
    exit_price: float
    profit: float
    profit_percent: float
    reason: str = ""


@dataclass(frozen=True)
class VolatilityUpdated(EventBase):
    time: datetime
    symbol: str
    atr: float


class EventLog:
    """Append-only, replayable sequence of events."""

    def __init__(self):
        self._events: List[EventBase] = []
        self._cursor = 0
        self._lock = threading.Lock()

    def append(self, event: EventBase) -> EventBase:
        with self._lock:
            self._events.append(event)
        return event

    def drain(self) -> List[EventBase]:
        """Events appended since the previous drain."""
        with self._lock:
            fresh = self._events[self._cursor:]
            self._cursor = len(self._events)
        return fresh

    def of_type(self, event_type: type) -> List[EventBase]:
        return [e for e in self if isinstance(e, event_type)]

    def __iter__(self) -> Iterator[EventBase]:
        with self._lock:
            return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
