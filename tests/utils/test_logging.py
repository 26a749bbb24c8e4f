"""Unit tests for the logging module."""

import logging
import os
import unittest
from unittest.mock import MagicMock, patch

from relaymatch.utils.logging import (
    Colors,
    LogLevel,
    ProgressTracker,
    RelayMatchLogger,
    SimpleFormatter,
    Symbols,
    log_error,
    log_progress,
    log_success,
    setup_logging,
    suppress_third_party_logs,
)


class TestLogLevel(unittest.TestCase):
    def test_log_levels(self):
        """Levels are ordered from quiet to debug."""
        self.assertLess(LogLevel.QUIET.value, LogLevel.NORMAL.value)
        self.assertLess(LogLevel.NORMAL.value, LogLevel.VERBOSE.value)
        self.assertLess(LogLevel.VERBOSE.value, LogLevel.DEBUG.value)


class TestSimpleFormatter(unittest.TestCase):
    def test_format_colors_by_level(self):
        formatter = SimpleFormatter()
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)
        output = formatter.format(record)
        self.assertTrue(output.startswith(Colors.YELLOW))
        self.assertIn("careful", output)
        self.assertTrue(output.endswith(Colors.RESET))


class TestSetupLogging(unittest.TestCase):
    def setUp(self):
        self._saved = {
            key: os.environ.get(key)
            for key in ("RELAYMATCH_LOG_LEVEL", "RELAYMATCH_EFFECTIVE_LOG_LEVEL")
        }
        for key in self._saved:
            os.environ.pop(key, None)

    def tearDown(self):
        for key, value in self._saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        RelayMatchLogger.set_level(LogLevel.NORMAL)

    def test_explicit_level(self):
        setup_logging(LogLevel.DEBUG)
        self.assertEqual(RelayMatchLogger.get_level(), LogLevel.DEBUG)
        self.assertEqual(os.environ["RELAYMATCH_EFFECTIVE_LOG_LEVEL"], "DEBUG")
        self.assertEqual(logging.getLogger().level, logging.DEBUG)

    def test_level_from_environment(self):
        os.environ["RELAYMATCH_LOG_LEVEL"] = "quiet"
        setup_logging()
        self.assertEqual(RelayMatchLogger.get_level(), LogLevel.QUIET)

    def test_unknown_environment_value_falls_back_to_normal(self):
        os.environ["RELAYMATCH_LOG_LEVEL"] = "chatty"
        setup_logging()
        self.assertEqual(RelayMatchLogger.get_level(), LogLevel.NORMAL)

    def test_third_party_loggers_are_quieted(self):
        suppress_third_party_logs()
        self.assertEqual(logging.getLogger("pulp").level, logging.WARNING)


class TestLogHelpers(unittest.TestCase):
    def tearDown(self):
        RelayMatchLogger.set_level(LogLevel.NORMAL)

    @patch.object(RelayMatchLogger, "get_logger")
    def test_progress_and_success_respect_quiet(self, mock_get_logger):
        mock_logger = MagicMock()
        mock_get_logger.return_value = mock_logger

        RelayMatchLogger.set_level(LogLevel.QUIET)
        log_progress("working")
        log_success("done")
        mock_logger.info.assert_not_called()

        log_error("broken")
        mock_logger.error.assert_called_once()
        self.assertIn(Symbols.CROSS, mock_logger.error.call_args[0][0])

    def test_progress_tracker_silent_in_quiet_mode(self):
        RelayMatchLogger.set_level(LogLevel.QUIET)
        tracker = ProgressTracker(["a", "b"])
        self.assertIsNone(tracker.pbar)
        tracker.advance("a done")
        tracker.advance()
        tracker.close()
        self.assertEqual(tracker.current, 2)


if __name__ == "__main__":
    unittest.main()
