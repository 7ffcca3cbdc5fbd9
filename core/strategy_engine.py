# core/strategy_engine.py
import logging
from typing import Dict, List

from core.strategy_base import TradingStrategy

EXECUTED = "executed"
SKIPPED = "skipped"
FAILED = "failed"


class StrategyEngine:
    """
    Runs a fixed, ordered collection of strategies once per tick.
    A failing strategy is logged and skipped; it never stops the others.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._strategies: List[TradingStrategy] = []

    def add(self, strategy: TradingStrategy) -> None:
        if any(s.strategy_id == strategy.strategy_id for s in self._strategies):
            raise ValueError(f"strategy #{strategy.strategy_id} already added")
        self._strategies.append(strategy)

    def strategies(self) -> List[TradingStrategy]:
        return list(self._strategies)

    def __len__(self):
        return len(self._strategies)

    async def tick(self) -> Dict[int, str]:
        report = {}
        for strategy in self._strategies:
            extra = {'strategy_id': strategy.strategy_id, 'strategy_type': strategy.strategy_type}
            try:
                should_execute = await strategy.should_execute()
            except Exception as e:
                self.logger.warning(f"Error checking {strategy.strategy_type} strategy #{strategy.strategy_id}: {e!r}",
                                    extra=extra)
                report[strategy.strategy_id] = FAILED
                continue

            if not should_execute:
                report[strategy.strategy_id] = SKIPPED
                continue

            self.logger.info(f"Executing {strategy.strategy_type} strategy #{strategy.strategy_id}", extra=extra)
            try:
                await strategy.execute()
            except Exception as e:
                self.logger.error(f"Strategy #{strategy.strategy_id} execution failed: {e!r}", extra=extra)
                report[strategy.strategy_id] = FAILED
            else:
                self.logger.success(f"Strategy #{strategy.strategy_id} executed successfully")
                report[strategy.strategy_id] = EXECUTED
        return report

    def to_dict(self) -> List[dict]:
        return [s.to_dict() for s in self._strategies]
