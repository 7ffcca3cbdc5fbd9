import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from data_models import SwapQuote

DEFAULT_FALLBACK = {
    "price": "0.1",
    "to": "0x1234567890abcdef1234567890abcdef12345678",
    "data": "0x",
}


class AggregatorQuoteClient:
    """
    Swap quotes from a DEX aggregator (OKX DEX API shape).

    Any non-success answer or transport failure yields the configured
    fallback quote, flagged with `is_fallback=True`. Quotes are not
    authenticated: callers must re-derive value before committing funds.
    """

    def __init__(
        self,
        base_url: str = "https://www.okx.com/api/v5/dex/aggregator",
        chain_id: int = 195,
        timeout_s: float = 10.0,
        fallback: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.base_url = base_url.rstrip('/')
        self.chain_id = chain_id
        self.timeout_s = timeout_s
        fallback = {**DEFAULT_FALLBACK, **(fallback or {})}
        self.fallback = SwapQuote(price=str(fallback['price']), to=str(fallback['to']),
                                  data=str(fallback['data']), is_fallback=True)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
            self._owns_session = True
        return self._session

    async def get_quote(self, token_in: str, token_out: str, amount: int) -> SwapQuote:
        params = {
            "chainId": str(self.chain_id),
            "tokenIn": token_in,
            "tokenOut": token_out,
            "amount": str(amount),
        }
        url = f"{self.base_url}/swap"
        self.logger.info(f"Requesting quote {token_in[:8]} -> {token_out[:8]} for {amount} on chain {self.chain_id}")

        try:
            session = await self._get_session()
            async with session.get(url, params=params) as response:
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.warning(f"Quote request failed: {e!r}; using fallback quote")
            return self.fallback

        return self._parse(body)

    def _parse(self, body: Any) -> SwapQuote:
        if not isinstance(body, dict):
            self.logger.warning("Aggregator returned an unexpected body; using fallback quote")
            return self.fallback

        code = body.get("code")
        if code is not None and str(code) != "0":
            self.logger.warning(f"Aggregator API error: {body.get('msg')}; using fallback quote")
            return self.fallback

        data = body.get("data")
        # the OKX API wraps the payload in a one-element list
        if isinstance(data, list) and data:
            data = data[0]
        if isinstance(data, dict):
            tx = data.get("tx") if isinstance(data.get("tx"), dict) else data
            to, call_data = tx.get("to"), tx.get("data")
            if to and call_data is not None:
                return SwapQuote(price=str(data.get("price", tx.get("price", ""))), to=str(to), data=str(call_data))

        self.logger.warning("Aggregator response had no usable quote; using fallback quote")
        return self.fallback

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
