# tests/test_strategy_engine.py

import pytest

from core.strategy_base import TradingStrategy
from core.strategy_engine import EXECUTED, FAILED, SKIPPED, StrategyEngine


class ScriptedStrategy(TradingStrategy):
    strategy_type = "Scripted"

    def __init__(self, strategy_id, eligible=True, check_error=None, execute_error=None, calls=None):
        super().__init__(strategy_id)
        self.eligible = eligible
        self.check_error = check_error
        self.execute_error = execute_error
        self.calls = calls if calls is not None else []
        self.executions = 0

    async def should_execute(self):
        self.calls.append(("check", self.strategy_id))
        if self.check_error:
            raise self.check_error
        return self.eligible

    async def _execute(self):
        self.calls.append(("execute", self.strategy_id))
        if self.execute_error:
            raise self.execute_error
        self.executions += 1

    def export_state(self):
        return {"executions": self.executions}


@pytest.mark.asyncio
async def test_failures_are_isolated_per_strategy():
    calls = []
    engine = StrategyEngine()
    engine.add(ScriptedStrategy(1, check_error=ValueError("bad price"), calls=calls))
    engine.add(ScriptedStrategy(2, execute_error=ConnectionError("rpc down"), calls=calls))
    engine.add(ScriptedStrategy(3, eligible=False, calls=calls))
    engine.add(ScriptedStrategy(4, calls=calls))

    report = await engine.tick()

    assert report == {1: FAILED, 2: FAILED, 3: SKIPPED, 4: EXECUTED}
    assert calls == [
        ("check", 1),
        ("check", 2), ("execute", 2),
        ("check", 3),
        ("check", 4), ("execute", 4),
    ]


@pytest.mark.asyncio
async def test_strategies_run_in_insertion_order_every_tick():
    calls = []
    engine = StrategyEngine()
    for sid in (3, 1, 2):
        engine.add(ScriptedStrategy(sid, eligible=False, calls=calls))

    await engine.tick()
    await engine.tick()

    assert [sid for _, sid in calls] == [3, 1, 2, 3, 1, 2]


def test_duplicate_ids_are_rejected():
    engine = StrategyEngine()
    engine.add(ScriptedStrategy(1))

    with pytest.raises(ValueError):
        engine.add(ScriptedStrategy(1))


def test_to_dict_exposes_dashboard_shape():
    engine = StrategyEngine()
    engine.add(ScriptedStrategy(7))

    assert engine.to_dict() == [{"id": 7, "type": "Scripted", "active": True, "state": {"executions": 0}}]
