"""
Agents API Client

Single responsibility: read portfolio values and token prices from the
agents REST API.

Every public fetch either returns a number or raises TransientFetchError;
callers never see aiohttp exceptions.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import aiohttp

from ..errors import TransientFetchError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://app.iqai.com/api"
BASE_TOKEN_PRICE_KEY = "everipedia"

# HTTP statuses worth retrying
RETRYABLE_STATUSES = {429, 503}


@dataclass
class Holding:
    """One token position in a wallet."""
    token_contract: str
    name: str
    amount: float
    price_usd: float

    @property
    def value_usd(self) -> float:
        return self.amount * self.price_usd


@dataclass
class AgentInfo:
    """Subset of /agents/info used for labelling watches."""
    token_contract: str
    name: str
    ticker: str = ""
    is_active: bool = True

    @property
    def label(self) -> str:
        if self.ticker:
            return f"{self.name} ({self.ticker})"
        return self.name


def calculate_holdings_value(holdings: List[Holding]) -> float:
    """Total USD value of a holdings list."""
    return sum(h.value_usd for h in holdings)


class AgentsClient:
    """
    Async client for the agents API.

    Handles:
    - Wallet holdings and portfolio value
    - Per-token USD price (agent stats)
    - Base token price (prices endpoint)
    - Retries with exponential backoff on network errors, 429 and 503
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        max_retries: int = 3,
        retry_backoff_sec: float = 1.0,
        timeout_sec: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_backoff_sec = retry_backoff_sec
        self.timeout_sec = timeout_sec
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        """Create session if needed."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec),
                headers={"Content-Type": "application/json"},
            )

    async def close(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _get_json(self, path: str, params: Optional[dict] = None, target_id: str = None) -> Any:
        """
        GET a JSON document with retry logic.

        Raises:
            TransientFetchError: once retries are exhausted or on a
                non-retryable HTTP error
        """
        await self._ensure_session()
        url = f"{self.base_url}{path}"
        last_error = "no attempt made"

        for attempt in range(self.max_retries + 1):
            try:
                async with self._session.get(url, params=params) as response:
                    if response.status in RETRYABLE_STATUSES:
                        last_error = f"HTTP {response.status}"
                    elif response.status != 200:
                        raise TransientFetchError(
                            f"GET {path} failed: HTTP {response.status}", target_id=target_id
                        )
                    else:
                        logger.debug(f"GET {path} -> {response.status}")
                        return await response.json(content_type=None)

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < self.max_retries:
                backoff = self.retry_backoff_sec * (2 ** attempt)
                logger.warning(
                    f"GET {path} failed ({last_error}), retry {attempt + 1}/{self.max_retries} in {backoff}s"
                )
                await asyncio.sleep(backoff)

        raise TransientFetchError(
            f"GET {path} failed after {self.max_retries + 1} attempts: {last_error}",
            target_id=target_id,
        )

    # -------------------------------------------------------------------------
    # Public Methods
    # -------------------------------------------------------------------------

    async def get_holdings(self, address: str) -> List[Holding]:
        """Holdings for a wallet address."""
        data = await self._get_json("/holdings", {"address": address}, target_id=address)

        try:
            holdings = []
            for item in data.get("holdings", []):
                holdings.append(Holding(
                    token_contract=item.get("tokenContract", ""),
                    name=item.get("name", ""),
                    amount=float(item["tokenAmount"]),
                    price_usd=float(item["currentPriceInUsd"]),
                ))
            return holdings
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise TransientFetchError(f"Malformed holdings payload: {e}", target_id=address) from e

    async def fetch_portfolio_value(self, address: str) -> float:
        """Aggregate USD value of a wallet's holdings."""
        holdings = await self.get_holdings(address)
        value = calculate_holdings_value(holdings)
        logger.debug(f"Portfolio {address[:10]}: {len(holdings)} holdings, ${value:,.2f}")
        return value

    async def fetch_token_price(self, token_address: str) -> float:
        """Current USD price of an agent token."""
        data = await self._get_json("/agents/stats", {"address": token_address}, target_id=token_address)

        try:
            return float(data["currentPriceInUSD"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientFetchError(f"Malformed stats payload: {e}", target_id=token_address) from e

    async def fetch_base_token_price(self, target_id: str = None) -> float:
        """Current USD price of the base token. target_id is accepted for a uniform fetch signature."""
        data = await self._get_json("/prices", target_id=target_id)

        try:
            return float(data[BASE_TOKEN_PRICE_KEY]["usd"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientFetchError(f"Malformed prices payload: {e}", target_id=target_id) from e

    async def get_agent_info(self, token_address: str) -> AgentInfo:
        """Name and ticker for an agent token."""
        data = await self._get_json("/agents/info", {"address": token_address}, target_id=token_address)

        try:
            return AgentInfo(
                token_contract=data.get("tokenContract") or token_address,
                name=data["name"],
                ticker=data.get("ticker") or "",
                is_active=bool(data.get("isActive", True)),
            )
        except (AttributeError, KeyError, TypeError) as e:
            raise TransientFetchError(f"Malformed agent info payload: {e}", target_id=token_address) from e
