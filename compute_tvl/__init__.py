"""compute_tvl package: value a protocol's token balances in USD across Ethereum, BSC and CoinGecko ids."""
from .aggregator import TokenValuation, compute_tvl, humanize_number

__all__ = [
    "compute_tvl",
    "TokenValuation",
    "humanize_number",
    "config",
    "normalize",
    "classification",
    "blockchain_utils",
    "metadata",
    "coingecko",
    "prices",
    "aggregator",
]
