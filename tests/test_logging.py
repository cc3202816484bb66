from __future__ import annotations

import json
import logging
import unittest

from dca_engine.common import log_event, sanitize_text, sanitize_value
from dca_engine.runtime.logging import JsonFormatter

PRIVATE_KEY = "0x" + "f" * 64


class SanitizeTests(unittest.TestCase):
    def test_url_query_strings_are_dropped(self) -> None:
        text = "GET https://api.example.com/v2/coins?api_key=secret&x=1 failed."

        self.assertEqual(sanitize_text(text), "GET https://api.example.com/v2/coins failed.")

    def test_secret_assignments_are_masked(self) -> None:
        self.assertEqual(sanitize_text("private_key=0xdeadbeef"), "private_key=***")

    def test_hex_keys_masked_only_when_requested(self) -> None:
        self.assertIn(PRIVATE_KEY, sanitize_text(f"key {PRIVATE_KEY}"))
        self.assertEqual(sanitize_text(f"key {PRIVATE_KEY}", mask_hex_keys=True), "key ***")

    def test_secret_fields_are_masked_recursively(self) -> None:
        value = {"delegatee_private_key": PRIVATE_KEY, "nested": {"api_key": "abc"}, "tx_hash": PRIVATE_KEY}

        sanitized = sanitize_value(value)

        self.assertEqual(sanitized["delegatee_private_key"], "***")
        self.assertEqual(sanitized["nested"]["api_key"], "***")
        self.assertEqual(sanitized["tx_hash"], PRIVATE_KEY)


class JsonFormatterTests(unittest.TestCase):
    def test_event_fields_are_emitted_as_json(self) -> None:
        logger = logging.getLogger("test.logging.json")
        records: list[logging.LogRecord] = []

        class _Capture(logging.Handler):
            def emit(self, record: logging.LogRecord) -> None:
                records.append(record)

        handler = _Capture()
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
        try:
            log_event(
                logger,
                level="info",
                event="execution_recorded",
                message=f"Recorded with {PRIVATE_KEY}",
                wallet_address="0x" + "a" * 40,
                private_key=PRIVATE_KEY,
            )
        finally:
            logger.removeHandler(handler)

        payload = json.loads(JsonFormatter().format(records[0]))

        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["event"], "execution_recorded")
        self.assertEqual(payload["message"], "Recorded with ***")
        self.assertEqual(payload["wallet_address"], "0x" + "a" * 40)
        self.assertEqual(payload["private_key"], "***")


if __name__ == "__main__":
    unittest.main()
