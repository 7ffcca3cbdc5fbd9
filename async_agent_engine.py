import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from arbitrage_scanner import ArbitrageScanner
from chain_manager_async import ChainRegistry
from core.strategy_engine import StrategyEngine
from gas_arbiter import GasArbiter
from portfolio_tracker import PortfolioTracker


class SentinelAgent:
    """
    The top-level scheduler. Every tick it refreshes the cross-chain
    portfolio, evaluates the strategies, scans for cross-chain price gaps
    and picks the cheapest chain for swaps, in that order. A failing step is
    logged and the tick moves on to the next one.
    """
    def __init__(
        self,
        config: Dict[str, Any],
        registry: ChainRegistry,
        portfolio: PortfolioTracker,
        gas_arbiter: GasArbiter,
        strategy_engine: StrategyEngine,
        scanner: Optional[ArbitrageScanner] = None,
        asset_price_fn: Optional[Callable] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.registry = registry
        self.portfolio = portfolio
        self.gas_arbiter = gas_arbiter
        self.strategy_engine = strategy_engine
        self.scanner = scanner
        self.asset_price_fn = asset_price_fn
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        # --- Agent Parameters ---
        self.params = self.config.get('agent', {})
        self.tick_interval_s = float(self.params.get('tick_interval_s', 30.0))
        self.gas_category = self.params.get('gas_category', 'swap')
        self.enable_strategies = bool(self.params.get('enable_strategies', False))
        self.enable_multichain = bool(self.params.get('enable_multichain', False))

        # --- Agent State ---
        self.is_running = False
        self.start_time = None
        self.tick_count = 0
        self.last_tick_at: Optional[float] = None
        self.best_chain: Optional[int] = None
        self.last_warnings = []
        self.last_opportunities = []
        self.last_strategy_report: Dict[int, str] = {}

    async def run(self, stop_event: Optional[asyncio.Event] = None):
        """The main async loop. Returns once `stop_event` is set, checked between ticks."""
        stop_event = stop_event or asyncio.Event()
        self.is_running = True
        self.start_time = self.clock()
        self.logger.info("Starting Sentinel Agent execution loop...")

        try:
            while not stop_event.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.tick_interval_s)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            self.logger.info("Agent run task was cancelled.")
            raise
        finally:
            self.is_running = False
            self.logger.info("Stopping Sentinel Agent...")

    async def tick(self):
        """One pass over all steps. Steps run one after another."""
        self.tick_count += 1
        self.logger.info(f"--- Executing agent loop (tick {self.tick_count}) ---")

        if self.enable_multichain:
            await self._step("portfolio refresh", self._refresh_portfolio)

        if self.enable_strategies:
            await self._step("strategy evaluation", self._run_strategies)

        if self.enable_multichain:
            if self.scanner is not None and self.asset_price_fn is not None:
                await self._step("arbitrage scan", self._scan_arbitrage)
            await self._step("gas arbitration", self._find_best_chain)

        self.last_tick_at = self.clock()

    async def _step(self, name: str, func):
        try:
            await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Agent step '{name}' failed: {e!r}", exc_info=True)

    async def _refresh_portfolio(self):
        snapshot, warnings = await self.portfolio.refresh()
        self.last_warnings = warnings
        for warning in warnings:
            self.logger.warning(f"Portfolio refresh warning on chain {warning.chain_id}: {warning.message}",
                                extra={'chain_id': warning.chain_id})
        self.logger.info(f"Current portfolio value: ${snapshot.total_value}")

    async def _run_strategies(self):
        self.last_strategy_report = await self.strategy_engine.tick()

    async def _scan_arbitrage(self):
        self.last_opportunities = await self.scanner.scan(self.registry.chain_ids(), self.asset_price_fn)
        if not self.last_opportunities:
            self.logger.info("No cross-chain arbitrage opportunities in this tick.")

    async def _find_best_chain(self):
        self.best_chain = await self.gas_arbiter.best_chain(self.gas_category)
        self.logger.info(f"Best chain for {self.gas_category}s: {self.registry.lookup(self.best_chain).name}")

    # --- dashboard read surface ---
    def status(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "running": self.is_running,
            "tick_count": self.tick_count,
            "last_tick_at": self.last_tick_at,
            "chains": [d.to_dict() for d in self.registry.all()],
            "portfolio": self.portfolio.snapshot.to_dict(now),
            "portfolio_warnings": [w.message for w in self.last_warnings],
            "strategies": self.strategy_engine.to_dict(),
            "last_strategy_report": {str(k): v for k, v in self.last_strategy_report.items()},
            "opportunities": [o.to_dict() for o in self.last_opportunities],
            "best_chain": self.best_chain,
        }
