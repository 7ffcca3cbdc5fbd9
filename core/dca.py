# core/dca.py
import time
from typing import Any, Callable, Dict, Optional

from core.strategy_base import TradeContext, TradingStrategy
from core.utils import StrategyExecutionFailure


class DCAStrategy(TradingStrategy):
    """
    Dollar cost averaging: swap a fixed amount of token_in for token_out every
    `interval_s` seconds, `max_executions` times, then deactivate.
    The first execution is due one interval after creation.
    """
    strategy_type = "DCA"

    def __init__(self, strategy_id: int, token_in: str, token_out: str, amount_per_execution: int,
                 interval_s: float, max_executions: int, trade_context: TradeContext,
                 clock: Callable[[], float] = time.time):
        super().__init__(strategy_id, clock)
        if amount_per_execution <= 0 or interval_s < 0 or max_executions <= 0:
            raise ValueError(f"invalid DCA parameters for strategy #{strategy_id}")
        self.token_in = token_in
        self.token_out = token_out
        self.amount_per_execution = int(amount_per_execution)
        self.interval_s = interval_s
        self.max_executions = int(max_executions)
        self.trade_context = trade_context
        self.total_executions = 0
        self.last_execution = self.clock()

    async def should_execute(self) -> bool:
        if not self.active:
            return False
        if self.total_executions >= self.max_executions:
            return False
        return (self.clock() - self.last_execution) >= self.interval_s

    async def _execute(self) -> Optional[str]:
        # an overlapping call may have used up this interval while waiting for the lock
        if not await self.should_execute():
            self.logger.info(f"DCA Strategy #{self.strategy_id} is no longer due; skipping", extra=self._log_extra())
            return None

        self.logger.info(
            f"Executing DCA Strategy #{self.strategy_id}: {self.token_in[:8]} -> {self.token_out[:8]}",
            extra=self._log_extra(),
        )
        try:
            tx_hash = await self.trade_context.swap(self, self.token_in, self.token_out, self.amount_per_execution)
        except Exception as e:
            raise StrategyExecutionFailure(self.strategy_id, f"failed to execute swap: {e!r}") from e

        self.last_execution = self.clock()
        self.total_executions += 1

        if self.total_executions >= self.max_executions:
            self.deactivate()
            self.logger.success(f"DCA Strategy #{self.strategy_id} completed all {self.max_executions} executions")
        return tx_hash

    def export_state(self) -> Dict[str, Any]:
        return {
            "total_executions": self.total_executions,
            "max_executions": self.max_executions,
            "last_execution": self.last_execution,
            "interval_s": self.interval_s,
        }
