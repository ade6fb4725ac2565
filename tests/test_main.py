import logging
import os
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest
from unittest.mock import patch

from trailstop import main as entrypoint
from trailstop.utils.logger import set_log_level, setup_logger


class MainTest(unittest.TestCase):
    def _run(self, lines):
        with TemporaryDirectory() as tmp:
            cfg_path = Path(tmp) / "config.txt"
            cfg_path.write_text("\n".join(lines), encoding="utf-8")
            with patch.dict(os.environ, {"TRAILSTOP_CONFIG": str(cfg_path)}), \
                    patch.object(entrypoint, "run_backtest") as backtest, \
                    patch.object(entrypoint, "run_live") as live:
                entrypoint.main()
        return backtest, live

    def test_dispatches_on_run_mode(self):
        backtest, live = self._run(["run_mode=backtest"])
        backtest.assert_called_once()
        live.assert_not_called()

        backtest, live = self._run(["run_mode=live"])
        live.assert_called_once()
        backtest.assert_not_called()

    def test_invalid_config_exits(self):
        with self.assertRaises(SystemExit) as ctx:
            self._run(["trading_mode=margin"])
        self.assertEqual(ctx.exception.code, 1)

    def test_unknown_run_mode(self):
        with self.assertRaises(ValueError):
            self._run(["run_mode=replay"])


class LoggerTest(unittest.TestCase):
    def test_set_log_level(self):
        logger = setup_logger("trailstop.tests.level")
        try:
            self.assertEqual(set_log_level("debug"), logging.DEBUG)
            self.assertEqual(logger.level, logging.DEBUG)
            self.assertEqual(set_log_level("WARN"), logging.WARNING)
            with self.assertRaises(ValueError):
                set_log_level("verbose")
        finally:
            set_log_level("info")


if __name__ == "__main__":
    unittest.main()
