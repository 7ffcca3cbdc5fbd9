# tests/test_rebalancer.py

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from core.rebalancer import RebalanceStrategy

ETH = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
USDC = "0x74b7F16337b8972027F6196A17a631aC6dE26d22"


@pytest.fixture
def values_fn():
    """Portfolio values per token; the tests set return_value."""
    return AsyncMock(return_value=[7000, 3000])


@pytest.fixture
def router():
    return AsyncMock()


def make_rebalancer(values_fn, router, clock, interval=timedelta(hours=24)):
    return RebalanceStrategy(3, [ETH, USDC], [6000, 4000], 500, interval, values_fn, trade_router=router, clock=clock)


@pytest.mark.asyncio
async def test_deviation_above_threshold_triggers(values_fn, router, clock):
    """[70%, 30%] against [60%, 40%] deviates by 1000 bps > 500."""
    strategy = make_rebalancer(values_fn, router, clock)
    clock.advance(timedelta(hours=24).total_seconds())

    assert await strategy.should_execute() is True


@pytest.mark.asyncio
async def test_deviation_within_threshold_does_not_trigger(values_fn, router, clock):
    values_fn.return_value = [6400, 3600]
    strategy = make_rebalancer(values_fn, router, clock)
    clock.advance(timedelta(hours=24).total_seconds())

    assert await strategy.should_execute() is False


@pytest.mark.asyncio
async def test_exact_threshold_does_not_trigger(values_fn, router, clock):
    values_fn.return_value = [6500, 3500]
    strategy = make_rebalancer(values_fn, router, clock)
    clock.advance(timedelta(hours=24).total_seconds())

    assert await strategy.should_execute() is False


@pytest.mark.asyncio
async def test_min_interval_blocks_eligibility(values_fn, router, clock):
    strategy = make_rebalancer(values_fn, router, clock)
    clock.advance(timedelta(hours=23).total_seconds())

    assert await strategy.should_execute() is False
    values_fn.assert_not_awaited()


@pytest.mark.asyncio
async def test_zero_total_value_is_not_eligible(values_fn, router, clock):
    values_fn.return_value = [0, 0]
    strategy = make_rebalancer(values_fn, router, clock, interval=timedelta(0))

    assert await strategy.should_execute() is False


@pytest.mark.asyncio
async def test_execute_routes_signed_differences(values_fn, router, clock):
    """Total 10000: ETH target 6000 (diff -1000), USDC target 4000 (diff +1000)."""
    strategy = make_rebalancer(values_fn, router, clock)
    clock.advance(timedelta(hours=24).total_seconds())

    plan = await strategy.execute()

    assert plan[ETH] == {"current": 7000, "target": 6000, "difference": -1000}
    assert plan[USDC] == {"current": 3000, "target": 4000, "difference": 1000}
    router.assert_any_await(ETH, -1000)
    router.assert_any_await(USDC, 1000)
    assert strategy.last_rebalance == clock.now
    assert await strategy.should_execute() is False


@pytest.mark.asyncio
async def test_execute_updates_timestamp_without_trades(values_fn, router, clock):
    values_fn.return_value = [6000, 4000]
    strategy = make_rebalancer(values_fn, router, clock)
    clock.advance(100)

    await strategy.execute()

    router.assert_not_awaited()
    assert strategy.last_rebalance == clock.now


@pytest.mark.asyncio
async def test_router_failure_does_not_block_other_assets(values_fn, router, clock):
    router.side_effect = [ConnectionError("dex down"), None]
    strategy = make_rebalancer(values_fn, router, clock)

    await strategy.execute()

    assert router.await_count == 2
    assert strategy.last_rebalance == clock.now


def test_targets_must_sum_to_full_allocation(values_fn, router, clock):
    with pytest.raises(ValueError):
        RebalanceStrategy(3, [ETH, USDC], [6000, 3000], 500, timedelta(hours=1), values_fn, clock=clock)
