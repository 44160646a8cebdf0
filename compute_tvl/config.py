from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

logger = logging.getLogger(__name__)

# ---------- Ledgers / key prefixes ----------
ETHEREUM = "ethereum"
BSC = "bsc"
IDS = "ids"

BSC_PREFIX = "bsc:"
ETH_PREFIX = "0x"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_ID = "ethereum"  # CoinGecko id the native asset is rewritten to
NATIVE_DECIMALS = 18

# ---------- CoinGecko endpoints ----------
# Live endpoints end with the query parameter name; ids are appended after "=".
LIVE_ENDPOINTS = {
    IDS: "simple/price?ids",
    ETHEREUM: "simple/token_price/ethereum?contract_addresses",
    BSC: "simple/token_price/binance-smart-chain?contract_addresses",
}

HISTORICAL_ENDPOINTS = {
    IDS: "coins",
    ETHEREUM: "coins/ethereum/contract",
    BSC: "coins/binance-smart-chain/contract",
}

# Cache keys for the secondary ledger carry its prefix.
CACHE_PREFIXES = {
    IDS: "",
    ETHEREUM: "",
    BSC: BSC_PREFIX,
}

CG_FREE_BASE = "https://api.coingecko.com/api/v3"
CG_PRO_BASE = "https://pro-api.coingecko.com/api/v3"

LIVE_CHUNK_SIZE = 100
# Historical lookups ask for this much price history on each side of the
# timestamp; older coins only have daily points at 00:00 UTC.
HISTORY_WINDOW_SEC = 24 * 3600
MULTICALL_CHUNK_SIZE = 500

# ---------- RPC ----------
ALCHEMY_PATTERNS = {
    ETHEREUM: "https://eth-mainnet.g.alchemy.com/v2/{key}",
    BSC: "https://bnb-mainnet.g.alchemy.com/v2/{key}",
}

PUBLIC_RPCS = {
    ETHEREUM: "https://eth.llamarpc.com",
    BSC: "https://bsc-dataseed.binance.org",
}

# --------- ABIs ----------
ERC20_ABI = [
    {"constant":True,"inputs":[],"name":"symbol","outputs":[{"name":"","type":"string"}],"type":"function"},
    {"constant":True,"inputs":[],"name":"decimals","outputs":[{"name":"","type":"uint8"}],"type":"function"},
]

# Multicall3 is deployed at the same address on every EVM chain we care about.
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

MULTICALL3_ABI = [
    {
        "inputs": [
            {"internalType": "bool", "name": "requireSuccess", "type": "bool"},
            {
                "components": [
                    {"internalType": "address", "name": "target", "type": "address"},
                    {"internalType": "bytes", "name": "callData", "type": "bytes"},
                ],
                "internalType": "struct Multicall3.Call[]",
                "name": "calls",
                "type": "tuple[]",
            },
        ],
        "name": "tryAggregate",
        "outputs": [
            {
                "components": [
                    {"internalType": "bool", "name": "success", "type": "bool"},
                    {"internalType": "bytes", "name": "returnData", "type": "bytes"},
                ],
                "internalType": "struct Multicall3.Result[]",
                "name": "returnData",
                "type": "tuple[]",
            }
        ],
        "stateMutability": "payable",
        "type": "function",
    },
]


@dataclass
class TvlConfig:
    coingecko_pro_api_key: str = ""
    coingecko_demo_api_key: str = ""
    coingecko_min_interval_sec: Optional[float] = None
    http_timeout_sec: float = 45.0
    rpc_urls: Dict[str, str] = field(default_factory=dict)

    @property
    def coingecko_base(self) -> str:
        return CG_PRO_BASE if self.coingecko_pro_api_key else CG_FREE_BASE

    @property
    def min_interval_sec(self) -> float:
        # Demo ≈ 30/min → ~2.2s; Pro Analyst 250/min → ~0.24s.
        if self.coingecko_min_interval_sec is not None:
            return self.coingecko_min_interval_sec
        return 0.24 if self.coingecko_pro_api_key else 2.2

    def coingecko_headers(self) -> dict:
        if self.coingecko_pro_api_key:
            return {"x-cg-pro-api-key": self.coingecko_pro_api_key}
        if self.coingecko_demo_api_key:
            return {"x-cg-demo-api-key": self.coingecko_demo_api_key}
        return {}

    def rpc_url(self, ledger: str) -> str:
        return self.rpc_urls.get(ledger) or get_rpc_url(ledger)


def get_rpc_url(chain: str, api_key: Optional[str] = None) -> str:
    """
    Get RPC URL for a ledger.

    Args:
        chain: Ledger name ('ethereum' or 'bsc')
        api_key: Alchemy API key (uses ALCHEMY_API_KEY env var if not provided)

    Returns:
        Alchemy URL when a key is available, otherwise a public RPC
    """
    chain = chain.lower()
    if chain not in PUBLIC_RPCS:
        raise ValueError(f"Unknown chain: {chain}")

    key = api_key or os.getenv("ALCHEMY_API_KEY", "").strip()
    if key:
        return ALCHEMY_PATTERNS[chain].format(key=key)
    return PUBLIC_RPCS[chain]


def _default_config_path() -> Path:
    env_path = os.getenv("COMPUTE_TVL_CONFIG", "").strip()
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config" / "api.yaml"


def _read_yaml(path: Path) -> dict:
    try:
        if path.exists():
            return yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"[config] failed to read {path}: {e}")
    return {}


def _float_or_none(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"[config] ignoring non-numeric interval {value!r}")
        return None


def load_config(path: Optional[Path] = None) -> TvlConfig:
    """
    Load configuration.
    Precedence:
      1) Environment variables (if set)
      2) config/api.yaml values (or `path`, or $COMPUTE_TVL_CONFIG)
      3) Hardcoded defaults
    """
    cfg = _read_yaml(Path(path) if path is not None else _default_config_path())

    def pick(env_name: str, cfg_name: str, default=None):
        env_val = os.getenv(env_name, "").strip()
        if env_val:
            return env_val
        cfg_val = cfg.get(cfg_name)
        if cfg_val is None:
            return default
        return cfg_val.strip() if isinstance(cfg_val, str) else cfg_val

    rpc_cfg = cfg.get("rpc_urls") or {}
    rpc_urls = {}
    for ledger, env_name in ((ETHEREUM, "ETHEREUM_RPC_URL"), (BSC, "BSC_RPC_URL")):
        url = os.getenv(env_name, "").strip() or (rpc_cfg.get(ledger) or "").strip()
        if url:
            rpc_urls[ledger] = url

    timeout = _float_or_none(pick("COMPUTE_TVL_HTTP_TIMEOUT_SEC", "http_timeout_sec"))

    return TvlConfig(
        coingecko_pro_api_key=pick("COINGECKO_PRO_API_KEY", "coingecko_pro_api_key", "") or "",
        coingecko_demo_api_key=pick("COINGECKO_DEMO_API_KEY", "coingecko_demo_api_key", "") or "",
        coingecko_min_interval_sec=_float_or_none(
            pick("COINGECKO_MIN_INTERVAL_SEC", "coingecko_min_interval_sec")
        ),
        http_timeout_sec=timeout if timeout is not None else 45.0,
        rpc_urls=rpc_urls,
    )
