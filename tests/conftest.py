"""Shared fakes for the on-chain batch reader, the price client and the HTTP session."""

import pytest

from compute_tvl.config import TvlConfig

USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
BUSD = "0xe9e7CEA3DedcA5984780Bafc599bD69ADd087D56"


class FakeBatchCall:
    """
    Records calls; answers from {(ledger, method): {target: output}}.
    Results come back reversed, so callers relying on position would break.
    """

    def __init__(self, data=None, raise_for=()):
        self.data = data or {}
        self.raise_for = set(raise_for)
        self.calls = []

    async def __call__(self, ledger, method, targets):
        self.calls.append((ledger, method, list(targets)))
        if (ledger, method) in self.raise_for:
            raise RuntimeError(f"rpc down for {ledger} {method}")
        outputs = self.data.get((ledger, method), {})
        results = []
        for target in reversed(list(targets)):
            if target in outputs:
                results.append({"input": {"target": target}, "success": True, "output": outputs[target]})
            else:
                results.append({"input": {"target": target}, "success": False})
        return results


class FakePriceClient:
    """
    live: {endpoint: {lowercased id: usd}}
    historical: {endpoint_base: {lowercased id: usd}}
    """

    def __init__(self, live=None, historical=None):
        self.live = live or {}
        self.historical = historical or {}
        self.live_calls = []
        self.historical_requests = []

    async def get_live_prices(self, ids, endpoint, cache, lock_gate, max_retries, prefix=""):
        self.live_calls.append((endpoint, list(ids), prefix))
        out = {}
        for token_id in ids:
            key = token_id.lower()
            if prefix + key in cache:
                out[key] = cache[prefix + key]
            elif key in self.live.get(endpoint, {}):
                out[key] = {"usd": self.live[endpoint][key]}
        return out

    async def get_historical_prices(self, ids, endpoint_base, timestamp, lock_gate, max_retries):
        out = {}
        for token_id in ids:
            await lock_gate()
            self.historical_requests.append((endpoint_base, token_id, timestamp))
            key = token_id.lower()
            if key in self.historical.get(endpoint_base, {}):
                out[key] = {"usd": self.historical[endpoint_base][key]}
        return out


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """requests.Session stand-in; `responder(url, params)` returns a FakeResponse or raises."""

    def __init__(self, responder=None):
        self.responder = responder or (lambda url, params: FakeResponse(200, {}))
        self.requests = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        return self.responder(url, params)

    def close(self):
        self.closed = True


class CountingGate:
    def __init__(self):
        self.count = 0

    async def __call__(self):
        self.count += 1


@pytest.fixture
def config():
    return TvlConfig()


@pytest.fixture
def gate():
    return CountingGate()
