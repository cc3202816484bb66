from .chain_reader import Web3ChainReader, wei_to_ether
from .price_oracle import DexScreenerPriceOracle, PriceOracleError, select_usd_price
from .trending import CoinrankingTrendingResolver, TrendingAssetError, select_target_asset

__all__ = [
    "CoinrankingTrendingResolver",
    "DexScreenerPriceOracle",
    "PriceOracleError",
    "TrendingAssetError",
    "Web3ChainReader",
    "select_target_asset",
    "select_usd_price",
    "wei_to_ether",
]
