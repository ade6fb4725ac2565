# file: trailstop/execution/serialization.py

import json
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional

from trailstop.execution.order_model import ClosedTrade, Position


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


def position_to_dict(position: Position) -> Dict[str, Any]:
    """Plain-data snapshot of a position; settings and tags are copies."""
    return {
        "symbol": position.symbol,
        "entry_price": position.entry_price,
        "quantity": position.quantity,
        "open_date": _iso(position.open_date),
        "close_date": _iso(position.close_date),
        "open_order_id": position.open_order_id,
        "stop_order_id": position.stop_order_id,
        "highest_price": position.highest_price,
        "current_price": position.current_price,
        "initial_stop_price": position.initial_stop_price,
        "current_trailing_stop": position.current_trailing_stop,
        "status": position.status.value,
        "profit": position.profit,
        "profit_percent": position.profit_percent,
        "trailing_settings": position.trailing_settings.as_dict(),
        "notes": position.notes,
        "tags": list(position.tags),
    }


def trade_to_dict(trade: ClosedTrade) -> Dict[str, Any]:
    data = asdict(trade)
    data["open_date"] = _iso(trade.open_date)
    data["close_date"] = _iso(trade.close_date)
    return data


def to_json(obj) -> str:
    if isinstance(obj, Position):
        return json.dumps(position_to_dict(obj))
    if isinstance(obj, ClosedTrade):
        return json.dumps(trade_to_dict(obj))
    raise TypeError(f"Cannot serialize {type(obj).__name__}")
