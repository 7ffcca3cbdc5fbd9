import logging
from typing import Dict, Optional

from chain_manager_async import ChainRegistry
from core.utils import NoAvailableChain, fan_out

DEFAULT_GAS_LIMIT = 100000


class GasArbiter:
    """Picks the registered chain where a transaction of a given category is cheapest."""

    def __init__(
        self,
        registry: ChainRegistry,
        gas_limits: Optional[Dict[str, int]] = None,
        default_gas_limit: int = DEFAULT_GAS_LIMIT,
        query_timeout_s: float = 10.0,
        max_concurrency: int = 8,
    ):
        self.logger = logging.getLogger(__name__)
        self.registry = registry
        self.gas_limits = {k: int(v) for k, v in (gas_limits or {}).items()}
        self.default_gas_limit = int(default_gas_limit)
        self.query_timeout_s = query_timeout_s
        self.max_concurrency = max_concurrency

    def gas_limit_for(self, category: str) -> int:
        return self.gas_limits.get(category, self.default_gas_limit)

    async def _query_gas_price(self, chain_id: int) -> int:
        return int(await self.registry.connection(chain_id).eth.gas_price)

    async def quote_costs(self, category: str = "swap") -> Dict[int, int]:
        """Estimated cost in wei per chain, in registry order. Failed chains are left out."""
        gas_limit = self.gas_limit_for(category)
        descriptors = self.registry.all()
        results = await fan_out(
            {d.chain_id: (lambda cid=d.chain_id: self._query_gas_price(cid)) for d in descriptors},
            timeout=self.query_timeout_s,
            limit=self.max_concurrency,
        )

        costs = {}
        for descriptor in descriptors:
            result = results[descriptor.chain_id]
            if isinstance(result, BaseException):
                self.logger.warning(f"Failed to get gas price for {descriptor.name} ({descriptor.chain_id}): {result!r}",
                                    extra={'chain_id': descriptor.chain_id})
                continue
            costs[descriptor.chain_id] = result * gas_limit
            self.logger.debug(f"{descriptor.name}: gas cost = {costs[descriptor.chain_id]} wei")
        return costs

    async def best_chain(self, category: str = "swap") -> int:
        costs = await self.quote_costs(category)

        best_chain_id, lowest = None, None
        for chain_id, cost in costs.items():
            # strict comparison keeps the first-seen chain on ties
            if lowest is None or cost < lowest:
                best_chain_id, lowest = chain_id, cost

        if best_chain_id is None:
            raise NoAvailableChain(f"no chain answered a gas price query for '{category}'")

        self.logger.info(f"Best chain for {category}: {self.registry.lookup(best_chain_id).name} (cost: {lowest} wei)")
        return best_chain_id
