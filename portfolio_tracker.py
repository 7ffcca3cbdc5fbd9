import copy
import logging
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from web3 import Web3

from chain_manager_async import ChainRegistry
from core.utils import TransientQueryFailure, fan_out
from data_models import ChainDescriptor, PortfolioSnapshot, RefreshWarning
from price_feed import FixedRatePriceFeed

PriceFn = Callable[[ChainDescriptor], Awaitable[int]]


class PortfolioTracker:
    """
    Aggregates the native balance of one address over every registered chain.

    A refresh queries all chains concurrently and builds the next snapshot
    from a copy of the current one, so a chain that fails keeps its previous
    balance. The copy replaces the current snapshot only after every query
    has finished; a cancelled refresh leaves the current snapshot as it was.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        address: str,
        price_fn: Optional[PriceFn] = None,
        query_timeout_s: float = 10.0,
        max_concurrency: int = 8,
        clock: Callable[[], float] = time.time,
    ):
        self.logger = logging.getLogger(__name__)
        self.registry = registry
        self.address = Web3.to_checksum_address(address)
        self.price_fn = price_fn or FixedRatePriceFeed()
        self.query_timeout_s = query_timeout_s
        self.max_concurrency = max_concurrency
        self.clock = clock
        self._snapshot = PortfolioSnapshot(address=self.address)

    @property
    def snapshot(self) -> PortfolioSnapshot:
        return self._snapshot

    async def _query_balance(self, chain_id: int, address: str) -> int:
        connection = self.registry.connection(chain_id)
        return int(await connection.eth.get_balance(address))

    async def refresh(self, address: Optional[str] = None) -> Tuple[PortfolioSnapshot, List[RefreshWarning]]:
        """
        Re-reads native balances on every registered chain.
        Returns the new snapshot and one warning per chain that could not be read.
        """
        address = Web3.to_checksum_address(address) if address is not None else self.address
        # a different address starts from an empty snapshot
        base = self._snapshot if address == self.address else PortfolioSnapshot(address=address)

        self.logger.info(f"Updating cross-chain portfolio for {address}")
        descriptors = self.registry.all()
        results = await fan_out(
            {d.chain_id: (lambda cid=d.chain_id: self._query_balance(cid, address)) for d in descriptors},
            timeout=self.query_timeout_s,
            limit=self.max_concurrency,
        )

        now = self.clock()
        fresh = copy.deepcopy(base)
        warnings: List[RefreshWarning] = []

        for descriptor in descriptors:
            cid = descriptor.chain_id
            result = results[cid]
            if isinstance(result, BaseException):
                failure = TransientQueryFailure(cid, result)
                self.logger.warning(
                    f"Failed to get native balance on {descriptor.name} ({cid}): {result!r}; keeping last known value",
                    extra={'chain_id': cid},
                )
                # never-confirmed chains are tracked as stale with no confirmation time
                fresh.confirmed_at.setdefault(cid, None)
                warnings.append(RefreshWarning(cid, str(failure)))
                continue

            fresh.balances[cid] = {descriptor.native_token: result}
            fresh.confirmed_at[cid] = now
            self.logger.info(f"Chain {descriptor.name}: {result} wei")

        fresh.total_value = await self._valuate(fresh)
        fresh.attempted_at = now
        if not descriptors or len(warnings) < len(descriptors):
            fresh.updated_at = now
        else:
            self.logger.warning("No chain answered the balance refresh; portfolio age keeps growing")
        self.address = address
        self._snapshot = fresh

        self.logger.info(f"Total portfolio value: ${fresh.total_value}")
        return fresh, warnings

    async def _valuate(self, snapshot: PortfolioSnapshot) -> int:
        total = 0
        for cid, tokens in snapshot.balances.items():
            if cid not in self.registry:
                continue
            descriptor = self.registry.lookup(cid)
            native = tokens.get(descriptor.native_token, 0)
            if not native:
                continue
            try:
                rate = int(await self.price_fn(descriptor))
            except Exception as e:
                self.logger.warning(f"Price lookup failed for {descriptor.name}: {e!r}; valued at 0",
                                    extra={'chain_id': cid})
                continue
            total += native * rate
        return total

    # --- read accessors, never fail ---
    def balance_of(self, chain_id: int, token: str) -> int:
        return self._snapshot.balance_of(chain_id, token)

    def total_balance(self, token: str) -> int:
        return self._snapshot.total_balance(token)

    def staleness(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since the last completed refresh, None before the first one."""
        return self._snapshot.age(now if now is not None else self.clock())
