# core/grid.py
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from core.strategy_base import TradeContext, TradingStrategy
from core.utils import StrategyExecutionFailure

PriceFn = Callable[[str, str], Awaitable[int]]

DEFAULT_TRADE_AMOUNT = 10 ** 18  # one whole token


class GridStrategy(TradingStrategy):
    """
    Grid trading around `base_price` in steps of `price_step`.

    Each grid level fires at most once for the lifetime of the strategy,
    even if the price later returns to it.
    """
    strategy_type = "Grid"

    def __init__(self, strategy_id: int, token_a: str, token_b: str, price_step: int, base_price: int,
                 price_fn: PriceFn, trade_context: TradeContext, trade_amount: int = DEFAULT_TRADE_AMOUNT,
                 grid_size: Optional[int] = None, clock: Callable[[], float] = time.time):
        super().__init__(strategy_id, clock)
        if price_step <= 0:
            raise ValueError(f"price_step must be positive for strategy #{strategy_id}")
        self.token_a = token_a
        self.token_b = token_b
        self.price_step = int(price_step)
        self.base_price = int(base_price)
        self.price_fn = price_fn
        self.trade_context = trade_context
        self.trade_amount = int(trade_amount)
        self.grid_size = grid_size
        self.triggered_levels: Set[int] = set()

    def grid_level(self, price: int) -> int:
        return (int(price) - self.base_price) // self.price_step

    def _in_range(self, level: int) -> bool:
        return self.grid_size is None or abs(level) <= self.grid_size

    async def should_execute(self) -> bool:
        if not self.active:
            return False
        level = self.grid_level(await self.price_fn(self.token_a, self.token_b))
        return self._in_range(level) and level not in self.triggered_levels

    async def _execute(self) -> Optional[str]:
        self.logger.info(f"Executing Grid Strategy #{self.strategy_id}", extra=self._log_extra())

        # the price may have moved since should_execute, so the level is recomputed
        current_price = int(await self.price_fn(self.token_a, self.token_b))
        level = self.grid_level(current_price)
        if level in self.triggered_levels or not self._in_range(level):
            self.logger.info(f"Grid level {level} not tradeable anymore for strategy #{self.strategy_id}")
            return None
        self.triggered_levels.add(level)

        if current_price > self.base_price:
            # above base: sell token_a for token_b
            token_in, token_out = self.token_a, self.token_b
        else:
            token_in, token_out = self.token_b, self.token_a

        self.logger.trade(f"Grid #{self.strategy_id} level {level} at price {current_price}: "
                          f"{token_in[:8]} -> {token_out[:8]}")
        try:
            return await self.trade_context.swap(self, token_in, token_out, self.trade_amount)
        except Exception as e:
            raise StrategyExecutionFailure(self.strategy_id, f"grid level {level} swap failed: {e!r}") from e

    def export_state(self) -> Dict[str, Any]:
        return {
            "base_price": self.base_price,
            "price_step": self.price_step,
            "triggered_levels": sorted(self.triggered_levels),
        }
