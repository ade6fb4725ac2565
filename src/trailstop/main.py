# file: trailstop/main.py
import os
import sys
from pathlib import Path

from trailstop.config.config_loader import AppConfig
from trailstop.core.engine import run_backtest, run_live
from trailstop.core.errors import ConfigurationError
from trailstop.utils.logger import setup_logger

logger = setup_logger(__name__)


def _default_config_path() -> Path:
    """
    Resolves config.txt:
    TRAILSTOP_CONFIG first, then config.txt in the CWD,
    finally the repo root (parent of src/).
    """
    env_path = os.getenv("TRAILSTOP_CONFIG")
    if env_path:
        return Path(env_path)

    cwd_candidate = Path.cwd() / "config.txt"
    if cwd_candidate.exists():
        return cwd_candidate

    return Path(__file__).resolve().parents[2] / "config.txt"


def main():
    cfg_path = _default_config_path()
    try:
        cfg = AppConfig.from_sources(str(cfg_path))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration in {cfg_path}: {e}")
        sys.exit(1)

    logger.info(f"Starting TrailStop in mode: {cfg.run_mode.upper()}")

    if cfg.run_mode == "backtest":
        run_backtest(cfg)

    elif cfg.run_mode == "live":
        run_live(cfg)

    else:
        logger.error(f"Invalid run_mode in config.txt: {cfg.run_mode}")
        raise ValueError(f"Invalid run_mode: {cfg.run_mode}")


if __name__ == "__main__":
    main()
