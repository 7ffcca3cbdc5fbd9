import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Sequence

from chain_manager_async import ChainRegistry
from data_models import ArbitrageOpportunity

AssetPriceFn = Callable[[int, str], Any]


def profit_percentage(price_a: int, price_b: int) -> int:
    """(price_b - price_a) * 100 / price_a in whole percent, truncated toward zero."""
    numerator = (price_b - price_a) * 100
    quotient = abs(numerator) // price_a
    return quotient if numerator >= 0 else -quotient


async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value


class ArbitrageScanner:
    """
    Compares the price of chain A's native asset on chain A and chain B for
    every pair of chains, and reports the pairs whose gap exceeds
    `min_profit_pct`. Scanning never moves funds.
    """

    def __init__(self, registry: ChainRegistry, min_profit_pct: int = 1):
        self.logger = logging.getLogger(__name__)
        self.registry = registry
        self.min_profit_pct = int(min_profit_pct)

    async def scan(self, chain_ids: Sequence[int], asset_price_fn: AssetPriceFn) -> List[ArbitrageOpportunity]:
        chain_ids = list(chain_ids)
        opportunities: List[ArbitrageOpportunity] = []
        prices: Dict[tuple, Any] = {}

        async def price_of(chain_id: int, token: str):
            key = (chain_id, token)
            if key not in prices:
                try:
                    prices[key] = int(await _resolve(asset_price_fn(chain_id, token)))
                except Exception as e:
                    self.logger.warning(f"Price lookup failed for {token} on chain {chain_id}: {e!r}",
                                        extra={'chain_id': chain_id})
                    prices[key] = None
            return prices[key]

        for i in range(len(chain_ids)):
            for j in range(i + 1, len(chain_ids)):
                chain_a, chain_b = chain_ids[i], chain_ids[j]
                token = self.registry.lookup(chain_a).native_token

                price_a = await price_of(chain_a, token)
                price_b = await price_of(chain_b, token)
                if price_a is None or price_b is None:
                    continue
                if price_a <= 0:
                    self.logger.warning(f"Non-positive price {price_a} on chain {chain_a}; skipping pair",
                                        extra={'chain_id': chain_a})
                    continue

                pct = profit_percentage(price_a, price_b)
                if pct > self.min_profit_pct:
                    opportunities.append(ArbitrageOpportunity(
                        source_chain=chain_a,
                        dest_chain=chain_b,
                        token=token,
                        price_source=price_a,
                        price_dest=price_b,
                        profit_pct=pct,
                    ))
                    self.logger.info(f"Found arbitrage: {chain_a} -> {chain_b} (profit: {pct}%)")

        return opportunities

    async def execute(self, opportunity: ArbitrageOpportunity, asset_price_fn: AssetPriceFn) -> bool:
        """
        Re-validates an opportunity against fresh prices before any funds move.
        Returns False when the gap no longer clears the threshold.
        Bridging is not implemented; the buy/bridge/sell legs are only logged.
        """
        price_a, price_b = await asyncio.gather(
            _resolve(asset_price_fn(opportunity.source_chain, opportunity.token)),
            _resolve(asset_price_fn(opportunity.dest_chain, opportunity.token)),
        )
        price_a, price_b = int(price_a), int(price_b)
        if price_a <= 0 or profit_percentage(price_a, price_b) <= self.min_profit_pct:
            self.logger.info(
                f"Arbitrage {opportunity.source_chain} -> {opportunity.dest_chain} no longer profitable "
                f"({price_a} / {price_b}); skipping"
            )
            return False

        # both ends must still be reachable
        self.registry.connection(opportunity.source_chain)
        self.registry.connection(opportunity.dest_chain)

        self.logger.trade(f"Buying {opportunity.token} on chain {opportunity.source_chain} at {price_a}")
        self.logger.trade(f"Bridging from chain {opportunity.source_chain} to chain {opportunity.dest_chain}")
        self.logger.trade(f"Selling {opportunity.token} on chain {opportunity.dest_chain} at {price_b}")
        return True
