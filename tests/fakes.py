"""Hand-written stand-ins for the exchange, shared by the test modules."""

from typing import Dict, List, Optional

from trailstop.core.errors import GatewayError
from trailstop.exchange.gateway import ExchangeGateway

HOUR_MS = 60 * 60 * 1000


def kline(open_time: int, o, h, l, c, step: int = HOUR_MS, volume="1.0") -> list:
    """Binance-shaped kline row, numbers as decimal strings."""
    return [
        open_time, str(o), str(h), str(l), str(c), str(volume),
        open_time + step - 1, "0.0", 10, "0.0", "0.0", "0",
    ]


class FakeGateway(ExchangeGateway):
    def __init__(self, prices: Optional[Dict[str, float]] = None, klines: Optional[List[list]] = None):
        self.prices = dict(prices or {})
        self.klines = list(klines or [])
        self.calls: List[tuple] = []
        self.fail_cancel = False
        self.fail_stop_order = False
        self.fail_price = False
        self._ids = 0

    def _next_id(self, prefix: str) -> str:
        self._ids += 1
        return f"{prefix}{self._ids}"

    def get_price(self, symbol):
        self.calls.append(("get_price", symbol))
        if self.fail_price:
            raise GatewayError("price unavailable", "get_price", symbol)
        return {"price": str(self.prices[symbol])}

    def get_historical_klines(self, symbol, interval, limit, start_time=None, end_time=None):
        self.calls.append(("get_historical_klines", symbol, interval, limit, start_time, end_time))
        rows = self.klines
        if start_time is not None:
            rows = [r for r in rows if r[0] >= start_time]
        if end_time is not None:
            rows = [r for r in rows if r[0] <= end_time]
        if start_time is None:
            return rows[-limit:]
        return rows[:limit]

    def create_market_order(self, symbol, side, quantity):
        self.calls.append(("create_market_order", symbol, side, quantity))
        return {"orderId": self._next_id("m"), "price": self.prices[symbol], "executedQty": quantity}

    def create_stop_loss_order(self, symbol, side, quantity, stop_price, limit_price):
        self.calls.append(("create_stop_loss_order", symbol, side, quantity, stop_price, limit_price))
        if self.fail_stop_order:
            raise GatewayError("stop order rejected", "create_stop_loss_order", symbol)
        return {"orderId": self._next_id("s")}

    def cancel_order(self, symbol, order_id):
        self.calls.append(("cancel_order", symbol, order_id))
        if self.fail_cancel:
            raise GatewayError("unknown order", "cancel_order", symbol)
        return {"orderId": order_id, "status": "CANCELED"}

    def calls_named(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]
