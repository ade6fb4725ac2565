# file: trailstop/execution/order_model.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from trailstop.core.trailing import (
    DEFAULT_TRAILING_SETTINGS,
    TrailingSettings,
    ratchet_stop,
    resolve_settings,
)


class PositionStatus(str, Enum):
    OPENING = "OPENING"
    ACTIVE = "ACTIVE"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Position:
    """
    One long trade and its trailing-stop bookkeeping.

    A stop of 0 means "not set yet". Once CLOSED, only `notes` may change.
    """

    symbol: str
    entry_price: float
    quantity: float
    open_order_id: Optional[str] = None
    stop_order_id: Optional[str] = None
    open_date: datetime = field(default_factory=_utcnow)
    close_date: Optional[datetime] = None

    highest_price: float = 0.0
    current_price: float = 0.0

    initial_stop_price: float = 0.0
    current_trailing_stop: float = 0.0

    status: PositionStatus = PositionStatus.OPENING

    profit: float = 0.0
    profit_percent: float = 0.0

    # per-position override, None fields inherit
    trailing_settings: TrailingSettings = field(default_factory=TrailingSettings)

    notes: str = ""
    tags: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.entry_price = float(self.entry_price)
        self.quantity = float(self.quantity)
        if self.entry_price <= 0:
            raise ValueError(f"entry_price must be positive, got {self.entry_price}")
        if not self.highest_price:
            self.highest_price = self.entry_price
        if not self.current_price:
            self.current_price = self.entry_price

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.status == PositionStatus.CLOSED

    def update_profit(self):
        """Recomputes the unrealised (or final) profit from current_price."""
        if not self.current_price:
            return None

        current_value = self.quantity * self.current_price
        entry_value = self.quantity * self.entry_price

        self.profit = current_value - entry_value
        self.profit_percent = ((self.current_price / self.entry_price) - 1) * 100
        return self.profit, self.profit_percent

    def observe_price(self, price: float) -> None:
        """Live price update: current price, running high and profit."""
        if self.is_closed:
            return
        price = float(price)
        self.current_price = price
        if price > self.highest_price:
            self.highest_price = price
        self.update_profit()

    def set_initial_stop(self, stop_price: float) -> float:
        self.initial_stop_price = float(stop_price)
        self.current_trailing_stop = self.initial_stop_price
        return self.current_trailing_stop

    def update_trailing_stop(
        self,
        settings: Optional[TrailingSettings] = None,
        atr_distance: Optional[float] = None,
        defaults: TrailingSettings = DEFAULT_TRAILING_SETTINGS,
    ) -> float:
        """
        Runs one ratchet step and returns the (possibly unchanged) stop.

        Settings resolve call site > this position's override > defaults, and
        the effective values are stored back on the position.
        """
        if self.is_closed:
            return self.current_trailing_stop

        active = resolve_settings(settings, self.trailing_settings, defaults)
        self.trailing_settings = active

        if self.current_trailing_stop == 0:
            return self.set_initial_stop(
                ratchet_stop(self.entry_price, self.highest_price, 0, self.profit_percent, active)
            )

        self.update_profit()
        self.current_trailing_stop = ratchet_stop(
            self.entry_price,
            self.highest_price,
            self.current_trailing_stop,
            self.profit_percent,
            active,
            atr_distance=atr_distance,
        )
        return self.current_trailing_stop

    def close(self, close_price: float, close_reason: str = "", closed_at: Optional[datetime] = None) -> bool:
        if self.is_closed:
            return False

        self.close_date = closed_at or _utcnow()
        self.current_price = float(close_price)
        self.update_profit()
        self.status = PositionStatus.CLOSED
        self.notes += f" Closed: {close_reason}" if close_reason else " Closed."
        object.__setattr__(self, "_sealed", True)
        return True

    def __setattr__(self, name, value):
        # closed positions are frozen apart from their notes
        if name != "notes" and self.__dict__.get("_sealed"):
            raise AttributeError(f"Position {self.symbol} is closed; '{name}' can no longer change")
        super().__setattr__(name, value)


@dataclass(frozen=True)
class ClosedTrade:
    """Snapshot of a position taken when it closed."""

    symbol: str
    entry_price: float
    exit_price: float
    quantity: float
    profit: float
    profit_percent: float
    open_date: datetime
    close_date: datetime
    holding_time_ms: float
    stop_price_at_close: float
    reason: str = ""

    @classmethod
    def from_position(cls, position: Position, exit_price: float, reason: str = "") -> "ClosedTrade":
        if position.close_date is None:
            raise ValueError(f"Position {position.symbol} has not been closed")
        holding = (position.close_date - position.open_date).total_seconds() * 1000
        return cls(
            symbol=position.symbol,
            entry_price=position.entry_price,
            exit_price=float(exit_price),
            quantity=position.quantity,
            profit=position.profit,
            profit_percent=position.profit_percent,
            open_date=position.open_date,
            close_date=position.close_date,
            holding_time_ms=holding,
            stop_price_at_close=position.current_trailing_stop,
            reason=reason,
        )
