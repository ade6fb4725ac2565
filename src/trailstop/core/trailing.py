# file: trailstop/core/trailing.py

"""
Trailing-stop ratchet.

The stop starts at a fixed distance below the entry price and, once the
position is far enough in profit, follows the highest observed price at a
fixed distance. It is only ever raised.
"""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class TrailingSettings:
    """Percentages driving the ratchet. `None` means "inherit from the next tier"."""

    initial_stop_distance_percent: Optional[float] = None
    activation_threshold_percent: Optional[float] = None
    trailing_distance_percent: Optional[float] = None

    def is_complete(self) -> bool:
        return None not in (
            self.initial_stop_distance_percent,
            self.activation_threshold_percent,
            self.trailing_distance_percent,
        )

    def as_dict(self) -> dict:
        return {
            "initial_stop_distance_percent": self.initial_stop_distance_percent,
            "activation_threshold_percent": self.activation_threshold_percent,
            "trailing_distance_percent": self.trailing_distance_percent,
        }


DEFAULT_TRAILING_SETTINGS = TrailingSettings(
    initial_stop_distance_percent=2.0,
    activation_threshold_percent=1.0,
    trailing_distance_percent=1.5,
)

_FIELDS = (
    "initial_stop_distance_percent",
    "activation_threshold_percent",
    "trailing_distance_percent",
)


def resolve_settings(
    call_site: Optional[TrailingSettings] = None,
    per_position: Optional[TrailingSettings] = None,
    defaults: TrailingSettings = DEFAULT_TRAILING_SETTINGS,
) -> TrailingSettings:
    """
    Field-by-field precedence: call site > per-position override > defaults.

    An explicit 0 is a value, only `None` falls through. Inputs are never
    modified; a new TrailingSettings is returned.
    """
    resolved = {}
    for name in _FIELDS:
        value = None
        for tier in (call_site, per_position, defaults):
            if tier is not None and getattr(tier, name) is not None:
                value = float(getattr(tier, name))
                break
        if value is None:
            value = getattr(DEFAULT_TRAILING_SETTINGS, name)
        resolved[name] = value
    return replace(DEFAULT_TRAILING_SETTINGS, **resolved)


def initial_stop_price(entry_price: float, initial_stop_distance_percent: float) -> float:
    stop_distance = entry_price * (initial_stop_distance_percent / 100)
    return entry_price - stop_distance


def ratchet_stop(
    entry_price: float,
    highest_price: float,
    current_stop: float,
    profit_percent: float,
    settings: TrailingSettings,
    atr_distance: Optional[float] = None,
) -> float:
    """
    One ratchet step. Pure: same inputs, same stop.

    - current_stop == 0: the stop was never set, place it at the initial
      distance below entry and stop there (no activation check).
    - profit below the activation threshold: keep the stop.
    - otherwise trail `highest_price` by the trailing percentage, or by
      `atr_distance` when given, and keep the larger of old and new stop.
    """
    if current_stop == 0:
        return initial_stop_price(entry_price, settings.initial_stop_distance_percent)

    if profit_percent < settings.activation_threshold_percent:
        return current_stop

    if atr_distance is not None and atr_distance > 0:
        candidate = highest_price - atr_distance
    else:
        candidate = highest_price * (1 - settings.trailing_distance_percent / 100)

    if candidate > current_stop:
        return candidate
    return current_stop
