"""Configuration loading utilities."""

import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from trailstop.core.errors import ConfigurationError
from trailstop.core.trailing import TrailingSettings

DEFAULT_CONFIG_FILE = "config.txt"

TRADING_MODES = ("paper", "live")
REQUIRED_FIELDS = ("trading_mode", "symbol", "position_size")

_INFINITY_TOKENS = ("inf", "infinity", "∞", "off", "none", "disabled")


def _load_kv_file(path: Path) -> Dict[str, str]:
    """Reads key=value pairs ignoring comments and blank lines."""
    data: Dict[str, str] = {}
    if not path.exists():
        return data

    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            data[key.strip()] = value.strip()
    return data


def _env(key: str) -> str:
    """Returns the first non-empty env var among KEY / TRAILSTOP_KEY."""
    for env_key in (key.upper(), f"TRAILSTOP_{key.upper()}"):
        val = os.getenv(env_key)
        if val is not None and str(val).strip() != "":
            return val
    return ""


def parse_interval_ms(raw: Any, default: float) -> float:
    """Milliseconds between ticks; 'inf' / '∞' disable the tick."""
    if raw is None or str(raw).strip() == "":
        return default
    if isinstance(raw, (int, float)):
        return float(raw)
    text = str(raw).strip().lower()
    if text in _INFINITY_TOKENS:
        return math.inf
    try:
        return float(text)
    except ValueError:
        return default


@dataclass
class TrailingStopConfig:
    initial_stop_distance_percent: float = 2.0
    activation_threshold_percent: float = 1.0
    trailing_distance_percent: float = 1.5
    # > 0 replaces the percentage trailing distance with ATR * multiplier
    atr_multiplier: float = 0.0
    atr_period: int = 14
    atr_interval: str = "1h"

    def settings(self) -> TrailingSettings:
        return TrailingSettings(
            initial_stop_distance_percent=self.initial_stop_distance_percent,
            activation_threshold_percent=self.activation_threshold_percent,
            trailing_distance_percent=self.trailing_distance_percent,
        )


@dataclass
class BacktestParams:
    symbol: str = "BTCUSDT"
    interval: str = "1h"
    start_date: str = "2023-01-01T00:00:00Z"
    end_date: str = "2023-06-30T23:59:59Z"


@dataclass
class AppConfig:
    """In-memory configuration used by the trailing-stop engine and the backtester."""

    binance_api_key: str = ""
    binance_api_secret: str = ""

    trading_mode: Optional[str] = "paper"  # or live
    log_level: str = "info"
    refresh_interval: float = 60_000.0
    volatility_update_interval: float = 3_600_000.0
    symbol: Optional[str] = "BTCUSDT"
    position_size: Optional[float] = 1_000.0
    initial_balance: float = 10_000.0
    run_mode: str = "live"  # or backtest
    open_position_on_start: bool = False
    close_on_exit: bool = False

    trailing_stop: TrailingStopConfig = field(default_factory=TrailingStopConfig)
    backtest_params: BacktestParams = field(default_factory=BacktestParams)

    @classmethod
    def from_sources(cls, config_path: str | None = None) -> "AppConfig":
        """
        Loads configuration with the following precedence:
        1) Environment variables (.env is loaded automatically)
        2) key=value file (default: config.txt or path passed)

        Environment vars accepted: any key below in upper case, optionally
        prefixed with TRAILSTOP_ (e.g. SYMBOL or TRAILSTOP_SYMBOL).
        """
        load_dotenv()

        cfg_path = (
            Path(config_path)
            if config_path
            else Path(os.getenv("TRAILSTOP_CONFIG") or DEFAULT_CONFIG_FILE)
        )
        file_data = _load_kv_file(cfg_path)

        def get_str(key: str, default: str = "") -> str:
            return _env(key) or file_data.get(key, default)

        def get_float(key: str, default: float) -> float:
            try:
                raw = get_str(key, default)
                return float(raw)
            except Exception:
                return default

        def get_int(key: str, default: int) -> int:
            try:
                raw = get_str(key, default)
                return int(raw)
            except Exception:
                return default

        def get_bool(key: str, default: bool) -> bool:
            raw = get_str(key, str(default)).lower()
            return raw in ("1", "true", "yes", "y", "on")

        position_size_raw = get_str("position_size", "1000")
        try:
            position_size = float(position_size_raw) if position_size_raw else None
        except ValueError as exc:
            raise ConfigurationError(f"Invalid position_size: {position_size_raw!r}") from exc

        cfg = cls(
            binance_api_key=get_str("binance_api_key"),
            binance_api_secret=get_str("binance_api_secret"),
            trading_mode=get_str("trading_mode", "paper").lower(),
            log_level=get_str("log_level", "info").lower(),
            refresh_interval=parse_interval_ms(get_str("refresh_interval"), 60_000.0),
            volatility_update_interval=parse_interval_ms(
                get_str("volatility_update_interval"), 3_600_000.0
            ),
            symbol=get_str("symbol", "BTCUSDT").upper(),
            position_size=position_size,
            initial_balance=get_float("initial_balance", 10_000.0),
            run_mode=get_str("run_mode", "live").lower(),
            open_position_on_start=get_bool("open_position_on_start", False),
            close_on_exit=get_bool("close_on_exit", False),
            trailing_stop=TrailingStopConfig(
                initial_stop_distance_percent=get_float("initial_stop_distance_percent", 2.0),
                activation_threshold_percent=get_float("activation_threshold_percent", 1.0),
                trailing_distance_percent=get_float("trailing_distance_percent", 1.5),
                atr_multiplier=get_float("atr_multiplier", 0.0),
                atr_period=get_int("atr_period", 14),
                atr_interval=get_str("atr_interval", "1h"),
            ),
            backtest_params=BacktestParams(
                symbol=get_str("backtest_symbol", "BTCUSDT").upper(),
                interval=get_str("backtest_interval", "1h"),
                start_date=get_str("backtest_start_date", "2023-01-01T00:00:00Z"),
                end_date=get_str("backtest_end_date", "2023-06-30T23:59:59Z"),
            ),
        )
        validate_config(cfg)
        return cfg

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppConfig":
        """
        Builds a config from a nested mapping over the defaults.
        `trailing_stop` and `backtest_params` may be partial mappings.
        A required key explicitly set to None is reported as missing.
        """
        data = dict(data)
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigurationError(f"Unknown configuration field(s): {', '.join(sorted(unknown))}")

        try:
            trailing = TrailingStopConfig(**dict(data.pop("trailing_stop", None) or {}))
            backtest = BacktestParams(**dict(data.pop("backtest_params", None) or {}))
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc
        for key in ("refresh_interval", "volatility_update_interval"):
            if key in data:
                data[key] = parse_interval_ms(data[key], getattr(cls, key))

        cfg = cls(trailing_stop=trailing, backtest_params=backtest, **data)
        validate_config(cfg)
        return cfg


def validate_config(cfg: AppConfig) -> bool:
    for name in REQUIRED_FIELDS:
        value = getattr(cfg, name, None)
        if value is None or (isinstance(value, str) and value.strip() == ""):
            raise ConfigurationError(f"Missing required configuration field: {name}")

    if cfg.trading_mode not in TRADING_MODES:
        raise ConfigurationError(
            f"Invalid trading_mode '{cfg.trading_mode}' (expected one of {', '.join(TRADING_MODES)})"
        )
    if cfg.position_size <= 0:
        raise ConfigurationError(f"position_size must be positive, got {cfg.position_size}")
    return True
