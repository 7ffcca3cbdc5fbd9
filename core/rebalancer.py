# rebalancer.py
"""
Threshold rebalancing:
- eligible when the minimum interval has passed and some asset's share of
  total value deviates from its target by more than the threshold
- computes each asset's target value and the signed difference to it
- hands every non-zero difference to a trade router hook
"""

import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from core.strategy_base import TradingStrategy

BASIS_POINTS = 10000

ValuesFn = Callable[[Sequence[str]], Awaitable[Sequence[int]]]
TradeRouter = Callable[[str, int], Awaitable[Any]]


class RebalanceStrategy(TradingStrategy):
    strategy_type = "Rebalance"

    def __init__(self, strategy_id: int, tokens: Sequence[str], target_bps: Sequence[int], threshold_bps: int,
                 min_interval: timedelta, values_fn: ValuesFn, trade_router: Optional[TradeRouter] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(strategy_id, clock)
        if len(tokens) != len(target_bps) or not tokens:
            raise ValueError(f"strategy #{strategy_id}: tokens and target percentages must match")
        if sum(target_bps) != BASIS_POINTS:
            raise ValueError(f"strategy #{strategy_id}: target percentages sum to {sum(target_bps)}, not {BASIS_POINTS}")
        self.tokens = list(tokens)
        self.target_bps = [int(p) for p in target_bps]
        self.threshold_bps = int(threshold_bps)
        self.min_interval = min_interval
        self.values_fn = values_fn
        self.trade_router = trade_router or self._log_only_router
        self.last_rebalance = self.clock()

    async def _values(self) -> List[int]:
        values = [int(v) for v in await self.values_fn(self.tokens)]
        if len(values) != len(self.tokens):
            raise ValueError(f"strategy #{self.strategy_id}: got {len(values)} values for {len(self.tokens)} tokens")
        return values

    def allocations(self, values: Sequence[int]) -> List[int]:
        """Current share of each asset in basis points of total value."""
        total = sum(values)
        if total <= 0:
            return [0] * len(values)
        return [v * BASIS_POINTS // total for v in values]

    def max_deviation(self, values: Sequence[int]) -> int:
        return max(abs(current - target) for current, target in zip(self.allocations(values), self.target_bps))

    async def should_execute(self) -> bool:
        if not self.active:
            return False

        if (self.clock() - self.last_rebalance) < self.min_interval.total_seconds():
            return False

        values = await self._values()
        if sum(values) <= 0:
            self.logger.debug(f"Total value for strategy #{self.strategy_id} is zero; nothing to rebalance.")
            return False

        return self.max_deviation(values) > self.threshold_bps

    def plan(self, values: Sequence[int]) -> Dict[str, Dict[str, int]]:
        """Target value and signed difference (target - current) per asset."""
        total = sum(values)
        plan = {}
        for token, current, pct in zip(self.tokens, values, self.target_bps):
            target = total * pct // BASIS_POINTS
            plan[token] = {"current": current, "target": target, "difference": target - current}
        return plan

    async def _execute(self) -> Dict[str, Dict[str, int]]:
        self.logger.info(f"Executing Rebalance Strategy #{self.strategy_id}", extra=self._log_extra())
        try:
            plan = self.plan(await self._values())
            for token, row in plan.items():
                if row["difference"] == 0:
                    continue
                self.logger.info(
                    f"Rebalancing {token[:8]}: current={row['current']}, target={row['target']}, diff={row['difference']}"
                )
                try:
                    await self.trade_router(token, row["difference"])
                except Exception as e:
                    self.logger.error(f"Failed to route rebalance trade for {token[:8]}: {e!r}", extra=self._log_extra())
        finally:
            # updated even when nothing traded, so the same tick cannot re-trigger
            self.last_rebalance = self.clock()
        return plan

    async def _log_only_router(self, token: str, difference: int) -> None:
        side = "buy" if difference > 0 else "sell"
        self.logger.trade(f"Rebalance #{self.strategy_id}: would {side} {abs(difference)} worth of {token[:8]}")

    def export_state(self) -> Dict[str, Any]:
        return {
            "targets_bps": dict(zip(self.tokens, self.target_bps)),
            "threshold_bps": self.threshold_bps,
            "last_rebalance": self.last_rebalance,
        }
