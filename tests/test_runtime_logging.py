from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from telemeter.runtime_logging import configure_runtime_logging, get_runtime_logger, parse_level


class RuntimeLoggingTests(unittest.TestCase):
    def tearDown(self) -> None:
        configure_runtime_logging(level="off")

    def test_writes_jsonl_and_filters_by_level(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "runtime.jsonl"
            logger = configure_runtime_logging(level="info", log_file=path)
            logger.debug("debug.hidden", foo="bar")
            logger.info("info.visible", foo="bar")

            payloads = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
            self.assertTrue(any(item["event"] == "info.visible" for item in payloads))
            self.assertFalse(any(item["event"] == "debug.hidden" for item in payloads))

    def test_bound_logger_tags_component(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "runtime.jsonl"
            configure_runtime_logging(level="debug", log_file=path)
            get_runtime_logger("queue").warning("queue.full.drop_oldest", max_size=50)

            payloads = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
            entry = next(item for item in payloads if item["event"] == "queue.full.drop_oldest")
            self.assertEqual(entry["component"], "queue")
            self.assertEqual(entry["max_size"], 50)
            self.assertEqual(entry["level"], "warning")

    def test_uses_environment_variables(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "from-env.jsonl"
            with patch.dict(
                os.environ,
                {"TELEMETER_LOG_LEVEL": "debug", "TELEMETER_LOG_FILE": str(path)},
                clear=False,
            ):
                logger = configure_runtime_logging()
                logger.debug("env.debug", alpha=1)

            payloads = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
            self.assertTrue(any(item["event"] == "env.debug" for item in payloads))

    def test_off_writes_nothing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "off.jsonl"
            logger = configure_runtime_logging(level="none", log_file=path)
            logger.bind("delivery").error("never.written")
            self.assertFalse(path.exists())

    def test_parse_level_aliases(self) -> None:
        self.assertEqual(parse_level("WARN"), "warning")
        self.assertEqual(parse_level("disabled"), "off")
        self.assertEqual(parse_level("loud", default="info"), "info")


if __name__ == "__main__":
    unittest.main()
