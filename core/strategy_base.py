# core/strategy_base.py
"""
Common contract for trading strategies.

Every strategy exposes the same four capabilities: an eligibility check
(`should_execute`), a side-effecting `execute`, an id and a type. The
engine only talks to strategies through this interface.

Execution is serialized per strategy: two `execute` calls on the same
strategy never overlap. Deactivation is permanent.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from data_models import ExecutionRecord, SwapQuote


@dataclass
class TradeContext:
    """Everything a strategy needs to turn a decision into a transaction."""
    quote_client: Any
    submitter: Any
    connection: Any
    chain_id: int
    journal: Optional[Any] = None

    async def swap(self, strategy: "TradingStrategy", token_in: str, token_out: str, amount: int) -> str:
        """Quote, submit and journal one swap. Returns the transaction hash; raises on failure."""
        quote: SwapQuote = await self.quote_client.get_quote(token_in, token_out, amount)
        if quote.is_fallback:
            strategy.logger.warning(f"Strategy #{strategy.strategy_id} is trading on a fallback quote")

        record = ExecutionRecord(
            strategy_id=strategy.strategy_id,
            strategy_type=strategy.strategy_type,
            chain_id=self.chain_id,
            token_in=token_in,
            token_out=token_out,
            amount=amount,
            status="PENDING",
        )
        try:
            tx_hash = await self.submitter.submit(self.connection, quote, self.chain_id)
        except Exception:
            record.status = "FAILED"
            self._journal(record)
            raise

        record.status = "SUBMITTED"
        record.tx_hash = tx_hash
        self._journal(record)
        return tx_hash

    def _journal(self, record: ExecutionRecord):
        if self.journal is not None:
            self.journal.log_execution(record)


class TradingStrategy(ABC):
    strategy_type = "base"

    def __init__(self, strategy_id: int, clock: Callable[[], float] = time.time):
        self.strategy_id = int(strategy_id)
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self._active = True
        self._lock = asyncio.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def deactivate(self) -> None:
        if self._active:
            self._active = False
            self.logger.info(f"{self.strategy_type} strategy #{self.strategy_id} deactivated")

    def _log_extra(self) -> Dict[str, Any]:
        return {'strategy_id': self.strategy_id, 'strategy_type': self.strategy_type}

    @abstractmethod
    async def should_execute(self) -> bool:
        """Pure eligibility predicate."""

    async def execute(self) -> Any:
        async with self._lock:
            return await self._execute()

    @abstractmethod
    async def _execute(self) -> Any:
        """Performs one execution. Called with the strategy lock held."""

    @abstractmethod
    def export_state(self) -> Dict[str, Any]:
        """Mutable execution state, for persistence hooks."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.strategy_id,
            "type": self.strategy_type,
            "active": self.active,
            "state": self.export_state(),
        }
