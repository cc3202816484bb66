from __future__ import annotations

import unittest
from decimal import Decimal

from dca_engine.market import TrendingAssetError, select_target_asset, select_usd_price, wei_to_ether
from dca_engine.market.trending import extract_chain_address, normalize_price

TOKEN = "0x" + "Ab" * 20


class SelectUsdPriceTests(unittest.TestCase):
    def test_picks_highest_volume_pair_on_requested_chain(self) -> None:
        payload = {
            "pairs": [
                {"chainId": "ethereum", "priceUsd": "9999", "volume": {"h24": 10_000_000}},
                {"chainId": "base", "priceUsd": "2490.5", "volume": {"h24": 1_000}},
                {"chainId": "base", "priceUsd": "2501.25", "volume": {"h24": "250000"}},
            ]
        }

        self.assertEqual(select_usd_price(payload, "base"), Decimal("2501.25"))

    def test_skips_pairs_without_usable_price(self) -> None:
        payload = {
            "pairs": [
                {"chainId": "base", "priceUsd": None, "volume": {"h24": 900}},
                {"chainId": "base", "priceUsd": "0", "volume": {"h24": 800}},
                {"chainId": "base", "priceUsd": "nan", "volume": {"h24": 700}},
                {"chainId": "base", "priceUsd": "1.5", "volume": {}},
            ]
        }

        self.assertEqual(select_usd_price(payload, "base"), Decimal("1.5"))

    def test_missing_or_malformed_payload_yields_none(self) -> None:
        self.assertIsNone(select_usd_price(None, "base"))
        self.assertIsNone(select_usd_price({"pairs": None}, "base"))
        self.assertIsNone(select_usd_price({"pairs": [{"chainId": "solana", "priceUsd": "1"}]}, "base"))


class SelectTargetAssetTests(unittest.TestCase):
    def test_top_coin_with_chain_address_is_selected(self) -> None:
        payload = {
            "data": {
                "coins": [
                    {
                        "symbol": "MEME ",
                        "name": "Meme Coin",
                        "price": "0.004200",
                        "contractAddresses": ["ethereum/0x" + "1" * 40, f"base/{TOKEN}"],
                    },
                    {"symbol": "OTHER", "contractAddresses": ["base/0x" + "2" * 40]},
                ]
            }
        }

        asset = select_target_asset(payload, "base")

        self.assertEqual(asset.symbol, "MEME")
        self.assertEqual(asset.name, "Meme Coin")
        self.assertEqual(asset.contract_address, TOKEN.lower())
        self.assertEqual(asset.price, "0.0042")

    def test_top_coin_without_chain_address_is_an_error(self) -> None:
        payload = {"data": {"coins": [{"symbol": "ETHONLY", "contractAddresses": ["ethereum/0x" + "1" * 40]}]}}

        with self.assertRaises(TrendingAssetError):
            select_target_asset(payload, "base")

    def test_empty_listing_is_an_error(self) -> None:
        for payload in (None, {}, {"data": {"coins": []}}, {"data": None}):
            with self.subTest(payload=payload):
                with self.assertRaises(TrendingAssetError):
                    select_target_asset(payload, "base")

    def test_extract_chain_address_ignores_malformed_entries(self) -> None:
        coin = {"contractAddresses": [None, "base/not-an-address", f"BASE/{TOKEN}"]}

        self.assertEqual(extract_chain_address(coin, "base"), TOKEN.lower())
        self.assertIsNone(extract_chain_address({"contractAddresses": "base/0x1"}, "base"))

    def test_normalize_price_rejects_negative_and_garbage(self) -> None:
        self.assertEqual(normalize_price(12.5), "12.5")
        with self.assertRaises(TrendingAssetError):
            normalize_price("-1")
        with self.assertRaises(TrendingAssetError):
            normalize_price("abc")


class WeiConversionTests(unittest.TestCase):
    def test_wei_to_ether_is_exact(self) -> None:
        self.assertEqual(wei_to_ether(1), Decimal("1E-18"))
        self.assertEqual(wei_to_ether(1_500_000_000_000_000_000), Decimal("1.5"))


if __name__ == "__main__":
    unittest.main()
