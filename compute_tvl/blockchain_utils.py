"""
Batched ERC20 metadata reads through Multicall3.

MulticallClient.batch_call(ledger, method, targets) resolves one zero-argument
ERC20 view (decimals or symbol) for many tokens in as few RPC round trips as
possible and reports each target independently:

    [{"input": {"target": "0x..."}, "success": True, "output": 18}, ...]

A reverted call, an invalid address or undecodable return data is reported as
success=False for that target only.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .config import (
    BSC,
    ETHEREUM,
    MULTICALL3_ABI,
    MULTICALL3_ADDRESS,
    MULTICALL_CHUNK_SIZE,
    TvlConfig,
    load_config,
)

logger = logging.getLogger(__name__)

SELECTORS = {
    "decimals": bytes(Web3.keccak(text="decimals()")[:4]),
    "symbol": bytes(Web3.keccak(text="symbol()")[:4]),
}

LEDGERS = (ETHEREUM, BSC)


def connect_rpc(rpc_url: str) -> AsyncWeb3:
    return AsyncWeb3(AsyncHTTPProvider(rpc_url))


def method_name(method: str) -> str:
    name = method.split(":", 1)[1] if method.startswith("erc20:") else method
    if name not in SELECTORS:
        raise ValueError(f"Unsupported batch method: {method}")
    return name


def decode_output(name: str, data: bytes) -> Any:
    if name == "decimals":
        if len(data) < 32:
            raise ValueError("short return data for decimals()")
        return int(decode(["uint256"], data)[0])
    try:
        return decode(["string"], data)[0]
    except DecodingError:
        # Legacy tokens (MKR, SAI) return bytes32 symbols.
        if len(data) != 32:
            raise
        return data.rstrip(b"\x00").decode("utf-8")


def _chunks(items: List, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class MulticallClient:
    def __init__(
        self,
        web3s: Optional[Dict[str, AsyncWeb3]] = None,
        config: Optional[TvlConfig] = None,
        chunk_size: int = MULTICALL_CHUNK_SIZE,
    ):
        self._web3s: Dict[str, AsyncWeb3] = dict(web3s or {})
        self._config = config
        self.chunk_size = chunk_size

    @classmethod
    def from_config(cls, config: Optional[TvlConfig] = None) -> "MulticallClient":
        return cls(config=config or load_config())

    def web3(self, ledger: str) -> AsyncWeb3:
        if ledger not in LEDGERS:
            raise ValueError(f"Unknown ledger: {ledger}")
        if ledger not in self._web3s:
            if self._config is None:
                self._config = load_config()
            self._web3s[ledger] = connect_rpc(self._config.rpc_url(ledger))
        return self._web3s[ledger]

    async def close(self) -> None:
        """Disconnect the providers this client opened or was given."""
        web3s, self._web3s = self._web3s, {}
        for ledger, w3 in web3s.items():
            try:
                await w3.provider.disconnect()
            except Exception as e:
                logger.warning(f"[multicall] {ledger} provider disconnect failed: {e}")

    async def batch_call(self, ledger: str, method: str, targets: List[str]) -> List[dict]:
        if not targets:
            return []
        name = method_name(method)
        selector = SELECTORS[name]
        w3 = self.web3(ledger)
        multicall = w3.eth.contract(address=MULTICALL3_ADDRESS, abi=MULTICALL3_ABI)

        results: List[dict] = []
        valid = []
        for target in targets:
            try:
                valid.append((target, Web3.to_checksum_address(target)))
            except (TypeError, ValueError):
                results.append({"input": {"target": target}, "success": False})

        for chunk in _chunks(valid, self.chunk_size):
            calls = [(checksummed, selector) for _, checksummed in chunk]
            raw = await multicall.functions.tryAggregate(False, calls).call()
            for (target, _), (ok, data) in zip(chunk, raw):
                entry = {"input": {"target": target}, "success": False}
                if ok:
                    try:
                        entry["output"] = decode_output(name, bytes(data))
                        entry["success"] = True
                    except (DecodingError, ValueError, UnicodeDecodeError) as e:
                        logger.debug(f"[multicall] {ledger} {name}() undecodable for {target}: {e}")
                results.append(entry)

        ok_count = sum(1 for r in results if r["success"])
        logger.debug(f"[multicall] {ledger} {name}(): {ok_count}/{len(targets)} succeeded")
        return results

