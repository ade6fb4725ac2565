# file: trailstop/exchange/gateway.py

import itertools
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from binance.client import Client
from binance.enums import ORDER_TYPE_STOP_LOSS_LIMIT, TIME_IN_FORCE_GTC
from binance.exceptions import BinanceAPIException, BinanceRequestException

from trailstop.core.errors import GatewayError
from trailstop.utils.logger import setup_logger

logger = setup_logger(__name__)


class ExchangeGateway(ABC):
    """Narrow exchange contract consumed by the engine and the loaders."""

    @abstractmethod
    def get_price(self, symbol: str) -> Dict[str, Any]:
        """{'price': ...} for the latest trade."""

    @abstractmethod
    def get_historical_klines(
        self,
        symbol: str,
        interval: str,
        limit: int,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> List[list]:
        """Raw 12-field klines, oldest first."""

    @abstractmethod
    def create_market_order(self, symbol: str, side: str, quantity: float) -> Dict[str, Any]:
        """{'orderId', 'price', 'executedQty'}."""

    @abstractmethod
    def create_stop_loss_order(
        self, symbol: str, side: str, quantity: float, stop_price: float, limit_price: float
    ) -> Dict[str, Any]:
        """{'orderId'}."""

    @abstractmethod
    def cancel_order(self, symbol: str, order_id) -> Dict[str, Any]:
        ...


class BinanceGateway(ExchangeGateway):
    """
    Gateway over python-binance.
    - live: orders go to Binance
    - paper: prices and klines come from Binance, orders are simulated locally
    """

    def __init__(self, client: Client, trading_mode: str = "paper"):
        self.client = client
        self.trading_mode = trading_mode
        self._paper_ids = itertools.count(1)
        self._paper_orders: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg) -> "BinanceGateway":
        return cls(Client(cfg.binance_api_key, cfg.binance_api_secret), cfg.trading_mode)

    @property
    def is_paper(self) -> bool:
        return self.trading_mode != "live"

    def _call(self, operation: str, fn, **kwargs):
        try:
            return fn(**kwargs)
        except (BinanceAPIException, BinanceRequestException, OSError) as e:
            symbol = kwargs.get("symbol", "")
            raise GatewayError(f"{operation} failed for {symbol}: {e}", operation, symbol) from e

    # ========== MARKET DATA ==========

    def test_connection(self) -> None:
        self._call("ping", self.client.ping)

    def get_price(self, symbol: str) -> Dict[str, Any]:
        ticker = self._call("get_price", self.client.get_symbol_ticker, symbol=symbol)
        return {"price": float(ticker["price"])}

    def get_historical_klines(self, symbol, interval, limit, start_time=None, end_time=None):
        params: Dict[str, Any] = {"symbol": symbol, "interval": interval, "limit": limit}
        if start_time is not None:
            params["startTime"] = int(start_time)
        if end_time is not None:
            params["endTime"] = int(end_time)
        return self._call("get_klines", self.client.get_klines, **params)

    # ========== ORDERS ==========

    def create_market_order(self, symbol: str, side: str, quantity: float) -> Dict[str, Any]:
        if self.is_paper:
            price = self.get_price(symbol)["price"]
            order_id = self._paper_order_id()
            logger.info(f"[PAPER] MARKET {side} {symbol} qty={quantity} @ {price} (order {order_id})")
            return {"orderId": order_id, "price": price, "executedQty": float(quantity)}

        order = self._call(
            "create_market_order", self.client.order_market,
            symbol=symbol, side=side, quantity=quantity,
        )
        executed = float(order.get("executedQty") or 0.0)
        quote = float(order.get("cummulativeQuoteQty") or 0.0)
        price = quote / executed if executed else float(order.get("price") or 0.0)
        logger.info(f"[ORDER] MARKET {side} {symbol} qty={executed} @ {price} (order {order['orderId']})")
        return {"orderId": order["orderId"], "price": price, "executedQty": executed}

    def create_stop_loss_order(self, symbol, side, quantity, stop_price, limit_price):
        if self.is_paper:
            order_id = self._paper_order_id()
            with self._lock:
                self._paper_orders[order_id] = {
                    "symbol": symbol,
                    "side": side,
                    "quantity": float(quantity),
                    "stopPrice": float(stop_price),
                    "price": float(limit_price),
                }
            logger.debug(f"[PAPER] STOP_LOSS_LIMIT {side} {symbol} stop={stop_price} limit={limit_price} (order {order_id})")
            return {"orderId": order_id}

        order = self._call(
            "create_stop_loss_order", self.client.create_order,
            symbol=symbol,
            side=side,
            type=ORDER_TYPE_STOP_LOSS_LIMIT,
            timeInForce=TIME_IN_FORCE_GTC,
            quantity=quantity,
            stopPrice=f"{stop_price:.8f}",
            price=f"{limit_price:.8f}",
        )
        return {"orderId": order["orderId"]}

    def cancel_order(self, symbol: str, order_id) -> Dict[str, Any]:
        if self.is_paper:
            with self._lock:
                removed = self._paper_orders.pop(str(order_id), None)
            if removed is None:
                raise GatewayError(f"Unknown paper order {order_id}", "cancel_order", symbol)
            return {"orderId": order_id, "status": "CANCELED"}

        return self._call("cancel_order", self.client.cancel_order, symbol=symbol, orderId=order_id)

    def open_paper_orders(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return dict(self._paper_orders)

    def _paper_order_id(self) -> str:
        return f"paper-{next(self._paper_ids)}"
