from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode
from eth_abi.exceptions import DecodingError

from compute_tvl.blockchain_utils import SELECTORS, MulticallClient, decode_output, method_name
from compute_tvl.config import MULTICALL3_ADDRESS

from conftest import DAI, USDC


def _fake_web3(*raw_results):
    w3 = MagicMock()
    contract = w3.eth.contract.return_value
    contract.functions.tryAggregate.return_value.call = AsyncMock(side_effect=list(raw_results))
    return w3, contract


class TestDecodeOutput:

    def test_decimals(self):
        assert decode_output("decimals", encode(["uint8"], [6])) == 6

    def test_short_decimals_rejected(self):
        with pytest.raises(ValueError):
            decode_output("decimals", b"\x06")

    def test_string_symbol(self):
        assert decode_output("symbol", encode(["string"], ["USDC"])) == "USDC"

    def test_bytes32_symbol(self):
        assert decode_output("symbol", b"MKR".ljust(32, b"\x00")) == "MKR"

    def test_garbage_symbol(self):
        with pytest.raises(DecodingError):
            decode_output("symbol", b"\x01\x02")


def test_method_name():
    assert method_name("erc20:decimals") == "decimals"
    assert method_name("symbol") == "symbol"
    with pytest.raises(ValueError):
        method_name("erc20:totalSupply")


class TestBatchCall:

    @pytest.mark.asyncio
    async def test_reports_each_target(self):
        w3, contract = _fake_web3([(True, encode(["uint8"], [6])), (False, b"")])
        client = MulticallClient(web3s={"ethereum": w3})

        out = await client.batch_call("ethereum", "erc20:decimals", [USDC, DAI])

        assert out == [
            {"input": {"target": USDC}, "success": True, "output": 6},
            {"input": {"target": DAI}, "success": False},
        ]
        w3.eth.contract.assert_called_once()
        assert w3.eth.contract.call_args.kwargs["address"] == MULTICALL3_ADDRESS
        contract.functions.tryAggregate.assert_called_once_with(
            False, [(USDC, SELECTORS["decimals"]), (DAI, SELECTORS["decimals"])]
        )

    @pytest.mark.asyncio
    async def test_targets_keep_caller_spelling(self):
        w3, contract = _fake_web3([(True, encode(["string"], ["USDC"]))])
        client = MulticallClient(web3s={"ethereum": w3})

        out = await client.batch_call("ethereum", "erc20:symbol", [USDC.lower()])

        assert out == [{"input": {"target": USDC.lower()}, "success": True, "output": "USDC"}]
        # checksummed on the wire
        assert contract.functions.tryAggregate.call_args.args[1] == [(USDC, SELECTORS["symbol"])]

    @pytest.mark.asyncio
    async def test_invalid_address_fails_alone(self):
        w3, _ = _fake_web3([(True, encode(["uint8"], [18]))])
        client = MulticallClient(web3s={"ethereum": w3})

        out = await client.batch_call("ethereum", "decimals", ["not-an-address", DAI])

        assert {"input": {"target": "not-an-address"}, "success": False} in out
        assert {"input": {"target": DAI}, "success": True, "output": 18} in out

    @pytest.mark.asyncio
    async def test_undecodable_success_is_failure(self):
        w3, _ = _fake_web3([(True, b"")])
        client = MulticallClient(web3s={"ethereum": w3})
        out = await client.batch_call("ethereum", "erc20:decimals", [USDC])
        assert out == [{"input": {"target": USDC}, "success": False}]

    @pytest.mark.asyncio
    async def test_chunks_large_batches(self):
        w3, contract = _fake_web3(
            [(True, encode(["uint8"], [6]))],
            [(True, encode(["uint8"], [18]))],
        )
        client = MulticallClient(web3s={"bsc": w3}, chunk_size=1)

        out = await client.batch_call("bsc", "erc20:decimals", [USDC, DAI])

        assert [r["output"] for r in out] == [6, 18]
        assert contract.functions.tryAggregate.call_count == 2

    @pytest.mark.asyncio
    async def test_empty_targets_skip_rpc(self):
        w3, contract = _fake_web3()
        client = MulticallClient(web3s={"ethereum": w3})
        assert await client.batch_call("ethereum", "erc20:decimals", []) == []
        w3.eth.contract.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_ledger(self):
        client = MulticallClient(web3s={})
        with pytest.raises(ValueError):
            await client.batch_call("solana", "erc20:decimals", [USDC])


class TestClose:

    @pytest.mark.asyncio
    async def test_disconnects_every_provider(self):
        eth, _ = _fake_web3()
        bsc, _ = _fake_web3()
        eth.provider.disconnect = AsyncMock()
        bsc.provider.disconnect = AsyncMock()
        client = MulticallClient(web3s={"ethereum": eth, "bsc": bsc})

        await client.close()

        eth.provider.disconnect.assert_awaited_once()
        bsc.provider.disconnect.assert_awaited_once()
        # a second close has nothing left to disconnect
        await client.close()
        eth.provider.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_disconnect_does_not_stop_the_rest(self):
        eth, _ = _fake_web3()
        bsc, _ = _fake_web3()
        eth.provider.disconnect = AsyncMock(side_effect=RuntimeError("already closed"))
        bsc.provider.disconnect = AsyncMock()
        client = MulticallClient(web3s={"ethereum": eth, "bsc": bsc})

        await client.close()

        bsc.provider.disconnect.assert_awaited_once()
