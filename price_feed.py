"""
Pluggable price hooks.

There is no on-chain oracle here. Prices are whole quote units (e.g. USD)
per whole native unit, as integers. Every feed can be used in two ways:

- `await feed(descriptor)` values a chain's native asset for the portfolio.
- `await feed.price(chain_id, token)` prices a token on a chain for the
  arbitrage scanner and the grid strategy.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

import ccxt.async_support as ccxt

from core.utils import async_retry
from data_models import ChainDescriptor


class FixedRatePriceFeed:
    """Constant conversion rate. Stand-in until a real oracle is plugged in."""

    def __init__(self, rate: int = 2000, overrides: Optional[Dict[int, int]] = None):
        self.rate = int(rate)
        self.overrides = {int(k): int(v) for k, v in (overrides or {}).items()}

    async def __call__(self, descriptor: ChainDescriptor) -> int:
        return await self.price(descriptor.chain_id, descriptor.native_token)

    async def price(self, chain_id: int, token: str) -> int:
        return self.overrides.get(chain_id, self.rate)

    async def close(self):
        pass


class CcxtPriceFeed:
    """
    Prices through a centralized exchange ticker, e.g. ETH/USDT on binance.

    symbol_map maps chain id -> market symbol for that chain's native asset;
    `default_symbol` is used for chains without an entry.
    """

    def __init__(self, exchange_id: str, symbol_map: Optional[Dict[int, str]] = None,
                 default_symbol: str = "ETH/USDT", params: Optional[dict] = None):
        self.logger = logging.getLogger(__name__)
        try:
            exchange_class = getattr(ccxt, exchange_id)
        except AttributeError:
            raise ValueError(f"Exchange '{exchange_id}' is not supported by ccxt.")
        self.exchange = exchange_class(params or {})
        self.symbol_map = {int(k): v for k, v in (symbol_map or {}).items()}
        self.default_symbol = default_symbol

    async def __call__(self, descriptor: ChainDescriptor) -> int:
        return await self.price(descriptor.chain_id, descriptor.native_token)

    @async_retry(max_retries=2, delay=0.5)
    async def price(self, chain_id: int, token: str) -> int:
        symbol = self.symbol_map.get(chain_id, self.default_symbol)
        ticker = await self.exchange.fetch_ticker(symbol)
        last = ticker.get('last') if ticker else None
        if last is None:
            raise ValueError(f"No last price for {symbol} on {self.exchange.id}")
        return int(Decimal(str(last)))

    async def close(self):
        await self.exchange.close()
