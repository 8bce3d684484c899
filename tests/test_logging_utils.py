from __future__ import annotations

import io
import json
import logging
import sys
import unittest
from datetime import date

from timecalc.errors import ConfigurationError
from timecalc.logging_utils import JsonFormatter, setup_json_logging


class JsonFormatterTests(unittest.TestCase):
    def test_extra_fields_are_serialized(self) -> None:
        record = logging.LogRecord("timecalc.test", logging.INFO, __file__, 1, "daily_calc_completed", (), None)
        record.employee_id = 7
        record.day_date = date(2026, 3, 2)

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "daily_calc_completed")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["employee_id"], 7)
        self.assertEqual(payload["day_date"], "2026-03-02")

    def test_tuples_and_sets_become_lists(self) -> None:
        record = logging.LogRecord("timecalc.test", logging.INFO, __file__, 1, "shift_detected", (), None)
        record.candidates = ("EARLY", "LATE")
        record.accounts = {"NIGHT", "HOLIDAY"}

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["candidates"], ["EARLY", "LATE"])
        self.assertEqual(payload["accounts"], ["HOLIDAY", "NIGHT"])

    def test_calculation_error_payload(self) -> None:
        try:
            raise ConfigurationError("bad rounding", code="INVALID_ROUNDING", day_date=date(2026, 3, 2), stage="resolve")
        except ConfigurationError:
            exc_info = sys.exc_info()
        record = logging.LogRecord("timecalc.test", logging.WARNING, __file__, 1, "daily_calc_failed", (), exc_info)

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["error"]["code"], "INVALID_ROUNDING")
        self.assertEqual(payload["error"]["stage"], "resolve")
        self.assertIn("exception", payload)


class SetupJsonLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        root_logger = logging.getLogger()
        saved_handlers, saved_level = root_logger.handlers[:], root_logger.level
        self.addCleanup(setattr, root_logger, "handlers", saved_handlers)
        self.addCleanup(root_logger.setLevel, saved_level)

    def test_setup_installs_json_handler(self) -> None:
        stream = io.StringIO()

        setup_json_logging("DEBUG", stream=stream)
        logging.getLogger("timecalc.test").debug("recalc_batch_complete", extra={"employees": 2})

        payload = json.loads(stream.getvalue().splitlines()[-1])
        self.assertEqual(payload["logger"], "timecalc.test")
        self.assertEqual(payload["employees"], 2)

    def test_setup_replaces_existing_handlers(self) -> None:
        setup_json_logging("INFO", stream=io.StringIO())
        setup_json_logging("WARNING", stream=io.StringIO())

        root_logger = logging.getLogger()
        self.assertEqual(len(root_logger.handlers), 1)
        self.assertEqual(root_logger.level, logging.WARNING)


if __name__ == "__main__":
    unittest.main()
