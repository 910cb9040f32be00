import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from tierwatch.api import AgentsClient, Holding, calculate_holdings_value
from tierwatch.errors import TransientFetchError


class FakeResponse:
    def __init__(self, status, payload=None):
        self.status = status
        self._payload = payload

    async def json(self, content_type=None):
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def session_returning(*responses):
    session = MagicMock()
    session.closed = False
    session.get = MagicMock(side_effect=list(responses))
    session.close = AsyncMock()
    return session


def test_holdings_value():
    holdings = [
        Holding("0xa", "A", amount=10, price_usd=1.5),
        Holding("0xb", "B", amount=2, price_usd=100),
    ]
    assert calculate_holdings_value(holdings) == 215


@pytest.mark.asyncio
async def test_portfolio_value_sums_holdings():
    client = AgentsClient()
    client._get_json = AsyncMock(return_value={
        "count": 2,
        "holdings": [
            {"tokenContract": "0xa", "tokenAmount": "1000", "name": "A", "currentPriceInUsd": 0.01},
            {"tokenContract": "0xb", "tokenAmount": "2.5", "name": "B", "currentPriceInUsd": 4},
        ],
    })

    assert await client.fetch_portfolio_value("0xwallet") == pytest.approx(20.0)
    client._get_json.assert_awaited_once_with("/holdings", {"address": "0xwallet"}, target_id="0xwallet")


@pytest.mark.asyncio
async def test_token_and_base_prices():
    client = AgentsClient()
    client._get_json = AsyncMock(side_effect=[
        {"currentPriceInUSD": 0.0042},
        {"everipedia": {"usd": 0.0031}},
    ])

    assert await client.fetch_token_price("0xtoken") == 0.0042
    assert await client.fetch_base_token_price("BASE_TOKEN") == 0.0031


@pytest.mark.asyncio
@pytest.mark.parametrize("method, payload", [
    ("fetch_token_price", {"price": 1}),
    ("fetch_base_token_price", {"everipedia": None}),
    ("fetch_portfolio_value", {"holdings": [{"tokenAmount": "x", "currentPriceInUsd": 1}]}),
])
async def test_malformed_payload_is_transient(method, payload):
    client = AgentsClient()
    client._get_json = AsyncMock(return_value=payload)

    with pytest.raises(TransientFetchError):
        await getattr(client, method)("0xtoken")


@pytest.mark.asyncio
async def test_agent_info_label():
    client = AgentsClient()
    client._get_json = AsyncMock(return_value={"name": "Sophia", "ticker": "SOPH", "tokenContract": "0xt"})

    info = await client.get_agent_info("0xt")
    assert info.label == "Sophia (SOPH)"


@pytest.mark.asyncio
async def test_retries_on_rate_limit_then_succeeds():
    client = AgentsClient(base_url="https://api.test/", retry_backoff_sec=0.5)
    client._session = session_returning(
        FakeResponse(429),
        FakeResponse(503),
        FakeResponse(200, {"currentPriceInUSD": 2}),
    )

    with patch("tierwatch.api.agents.asyncio.sleep", new=AsyncMock()) as sleep:
        assert await client.fetch_token_price("0xtoken") == 2.0

    assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]
    first_call = client._session.get.call_args_list[0]
    assert first_call.args[0] == "https://api.test/agents/stats"


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    client = AgentsClient(max_retries=2)
    client._session = session_returning(
        aiohttp.ClientConnectionError("refused"),
        asyncio.TimeoutError(),
        FakeResponse(503),
    )

    with patch("tierwatch.api.agents.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(TransientFetchError) as exc_info:
            await client.fetch_token_price("0xtoken")

    assert exc_info.value.target_id == "0xtoken"
    assert client._session.get.call_count == 3


@pytest.mark.asyncio
async def test_client_error_status_not_retried():
    client = AgentsClient()
    client._session = session_returning(FakeResponse(404))

    with pytest.raises(TransientFetchError):
        await client.fetch_token_price("0xtoken")

    assert client._session.get.call_count == 1


@pytest.mark.asyncio
async def test_close_releases_session():
    client = AgentsClient()
    session = session_returning()
    client._session = session

    await client.close()

    session.close.assert_awaited_once()
    assert client._session is None
