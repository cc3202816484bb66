from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from dca_engine.execution import InvalidPolicyError, Policy, PurchaseRecord
from dca_engine.execution.types import normalize_wallet_address, to_utc_datetime

from tests.fakes import T0, TOKEN_OUT, WALLET_A


def _policy_document(**overrides):
    document = {
        "walletAddress": WALLET_A.upper().replace("0X", "0x"),
        "purchaseIntervalSeconds": 60,
        "purchaseAmount": "0.001",
        "active": True,
        "registeredAt": "2026-03-01T12:00:00Z",
    }
    document.update(overrides)
    return document


class PolicyDocumentTests(unittest.TestCase):
    def test_valid_document_is_normalized(self) -> None:
        policy = Policy.from_document("p1", _policy_document())

        self.assertEqual(policy.wallet_address, WALLET_A)
        self.assertEqual(policy.purchase_interval_seconds, 60)
        self.assertEqual(policy.registered_at, T0)
        self.assertTrue(policy.active)

    def test_interval_bounds(self) -> None:
        Policy.from_document("p1", _policy_document(purchaseIntervalSeconds=10))
        Policy.from_document("p1", _policy_document(purchaseIntervalSeconds=31_536_000))
        for interval in (9, 31_536_001, "soon", None):
            with self.subTest(interval=interval):
                with self.assertRaises(InvalidPolicyError):
                    Policy.from_document("p1", _policy_document(purchaseIntervalSeconds=interval))

    def test_amount_must_be_plain_decimal_string(self) -> None:
        for amount in (0.001, "-1", "1e-3", "", None):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidPolicyError):
                    Policy.from_document("p1", _policy_document(purchaseAmount=amount))

    def test_wallet_and_registration_are_required(self) -> None:
        with self.assertRaises(InvalidPolicyError):
            Policy.from_document("p1", _policy_document(walletAddress="0x1234"))
        with self.assertRaises(InvalidPolicyError):
            Policy.from_document("p1", _policy_document(registeredAt=None))


class PurchaseRecordDocumentTests(unittest.TestCase):
    def test_failed_record_omits_tx_hash(self) -> None:
        record = PurchaseRecord(
            policy_id="p1",
            wallet_address=WALLET_A,
            symbol="MEME",
            name="Meme Coin",
            coin_address=TOKEN_OUT,
            price="0.0042",
            purchase_amount="0.001",
            success=False,
            purchased_at=T0,
            error="spend limit: spending limit exceeded",
        )

        document = record.to_document()

        self.assertNotIn("txHash", document)
        self.assertEqual(document["scheduleId"], "p1")
        self.assertEqual(document["error"], "spend limit: spending limit exceeded")
        self.assertEqual(PurchaseRecord.from_document(document), record)


class ConversionTests(unittest.TestCase):
    def test_to_utc_datetime_accepts_common_shapes(self) -> None:
        self.assertEqual(to_utc_datetime("2026-03-01T12:00:00Z"), T0)
        self.assertEqual(to_utc_datetime(T0.timestamp()), T0)
        self.assertEqual(to_utc_datetime(datetime(2026, 3, 1, 12, 0)), T0)
        self.assertEqual(
            to_utc_datetime(datetime(2026, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))),
            T0,
        )
        self.assertIsNone(to_utc_datetime("yesterday"))

    def test_normalize_wallet_address(self) -> None:
        self.assertEqual(normalize_wallet_address(f"  {WALLET_A.upper().replace('0X', '0x')} "), WALLET_A)
        with self.assertRaises(ValueError):
            normalize_wallet_address("0x" + "g" * 40)


if __name__ == "__main__":
    unittest.main()
