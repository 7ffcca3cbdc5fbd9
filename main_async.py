import asyncio
import logging
import os
import signal
import sys
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from eth_account import Account
from web3 import Web3

from arbitrage_scanner import ArbitrageScanner
from async_agent_engine import SentinelAgent
from chain_manager_async import ChainRegistry, default_connection_factory
from config.logging_config import setup_logging
from core.dca import DCAStrategy
from core.grid import GridStrategy
from core.rebalancer import RebalanceStrategy
from core.strategy_base import TradeContext
from core.strategy_engine import StrategyEngine
from core.trade_executor import SmartAccountSubmitter
from core.utils import FatalConfigurationError, UnknownChain, load_config
from data_models import ChainDescriptor, NATIVE_TOKEN
from gas_arbiter import GasArbiter
from portfolio_tracker import PortfolioTracker
from price_feed import CcxtPriceFeed, FixedRatePriceFeed
from quote_client import AggregatorQuoteClient
from trade_logger import TradeLogger

PLACEHOLDERS = {"", "your_priv_key_here", "deployed_smart_account_address_here"}


def _required(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if value in PLACEHOLDERS:
        raise FatalConfigurationError(f"CRITICAL ERROR: {name} environment variable is required")
    return value


def inject_secrets(config: Dict[str, Any], env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Merges environment values into the YAML config: RPC overrides per chain,
    the signing key, the smart account and the feature toggles.
    Missing required values are fatal.
    """
    env = os.environ if env is None else env
    agent = config.setdefault('agent', {})
    strategy_chain_id = int(agent.get('strategy_chain_id', 195))

    for entry in config['chains']:
        override = env.get(entry.get('rpc_env', '')) if entry.get('rpc_env') else None
        if override:
            entry['rpc_url'] = override

    strategy_chain = next((c for c in config['chains'] if int(c['chain_id']) == strategy_chain_id), None)
    if strategy_chain is None:
        raise FatalConfigurationError(f"CRITICAL ERROR: strategy chain {strategy_chain_id} is not in 'chains'.")
    rpc_env = strategy_chain.get('rpc_env')
    if rpc_env:
        _required(env, rpc_env)

    private_key = _required(env, 'PRIVATE_KEY')
    try:
        signer_address = Account.from_key(private_key).address
    except (ValueError, TypeError) as e:
        raise FatalConfigurationError(f"CRITICAL ERROR: invalid private key: {e}")

    smart_account = (env.get(f'SMART_ACCOUNT_{strategy_chain_id}') or "").strip() or _required(env, 'SMART_ACCOUNT')
    if not Web3.is_address(smart_account):
        raise FatalConfigurationError(f"CRITICAL ERROR: SMART_ACCOUNT is not an address: {smart_account}")

    config['secrets'] = {
        'private_key': private_key,
        'signer_address': signer_address,
        'smart_accounts': {strategy_chain_id: Web3.to_checksum_address(smart_account)},
    }
    agent['enable_strategies'] = env.get('ENABLE_STRATEGIES', '').lower() == 'true'
    agent['enable_multichain'] = env.get('ENABLE_MULTICHAIN', '').lower() == 'true'
    return config


def build_descriptors(config: Dict[str, Any]) -> List[ChainDescriptor]:
    return [ChainDescriptor.from_dict(entry) for entry in config['chains']]


def build_price_feed(config: Dict[str, Any]):
    pricing = config.get('pricing', {}) or {}
    if pricing.get('source', 'fixed') == 'ccxt':
        ccxt_cfg = pricing.get('ccxt', {}) or {}
        return CcxtPriceFeed(
            ccxt_cfg.get('exchange', 'binance'),
            symbol_map=ccxt_cfg.get('symbols'),
            default_symbol=ccxt_cfg.get('default_symbol', 'ETH/USDT'),
        )
    return FixedRatePriceFeed(int(pricing.get('fixed_rate', 2000)))


def build_strategies(config: Dict[str, Any], engine: StrategyEngine, trade_context: TradeContext,
                     portfolio: PortfolioTracker, price_feed) -> StrategyEngine:
    chain_id = trade_context.chain_id

    async def grid_price(token_a: str, token_b: str) -> int:
        return await price_feed.price(chain_id, token_a)

    async def portfolio_values(tokens):
        values = []
        for token in tokens:
            balance = portfolio.balance_of(chain_id, token)
            values.append(balance * await price_feed.price(chain_id, token) if balance else 0)
        return values

    for entry in config.get('strategies', []) or []:
        kind = entry['type']
        if kind == 'dca':
            strategy = DCAStrategy(
                entry['id'], entry.get('token_in', NATIVE_TOKEN), entry['token_out'],
                int(entry['amount_per_execution']), float(entry['interval_s']), int(entry['max_executions']),
                trade_context,
            )
        elif kind == 'grid':
            strategy = GridStrategy(
                entry['id'], entry.get('token_a', NATIVE_TOKEN), entry['token_b'],
                int(entry['price_step']), int(entry['base_price']), grid_price, trade_context,
                trade_amount=int(entry.get('trade_amount', 10 ** 18)), grid_size=entry.get('grid_size'),
            )
        else:
            strategy = RebalanceStrategy(
                entry['id'], entry['tokens'], entry['target_bps'], int(entry['threshold_bps']),
                timedelta(seconds=float(entry.get('min_interval_s', 86400))), portfolio_values,
            )
        engine.add(strategy)

    logging.info(f"Initialized {len(engine)} trading strategies")
    return engine


async def execute_basic_swap(config: Dict[str, Any], registry: ChainRegistry,
                             quote_client: AggregatorQuoteClient, submitter: SmartAccountSubmitter) -> str:
    """Single swap through the smart account, used when both feature toggles are off."""
    chain_id = int(config['agent'].get('strategy_chain_id', 195))
    logging.info("Executing basic swap demonstration...")
    quote = await quote_client.get_quote(NATIVE_TOKEN, "0x74b7F16337b8972027F6196A17a631aC6dE26d22", 10 ** 18)
    tx_hash = await submitter.submit(registry.connection(chain_id), quote, chain_id)
    logging.info(f"Basic swap executed: {tx_hash}")
    return tx_hash


def _install_signal_handlers(stop_event: asyncio.Event):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # not available on Windows event loops; Ctrl+C still raises KeyboardInterrupt
            pass


async def main(config_path: Optional[str] = None):
    """
    The main entry point for the agent.
    Initializes all components and runs the loop until a stop signal.
    """
    registry = None
    price_feed = None
    quote_client = None
    journal = None
    try:
        # 1. Load configuration and secrets
        load_dotenv()
        config = load_config(config_path)
        config = inject_secrets(config)
        setup_logging(config.get('logging'))
        agent_cfg = config['agent']

        # 2. Connect and verify chains
        query_timeout = float(agent_cfg.get('query_timeout_s', 10))
        registry = ChainRegistry(
            connection_factory=lambda d: default_connection_factory(d, timeout=query_timeout),
            register_timeout_s=float(agent_cfg.get('register_timeout_s', 15)),
        )
        await registry.register_all(build_descriptors(config))
        if not len(registry):
            raise FatalConfigurationError("CRITICAL ERROR: no chain could be registered.")

        # 3. Collaborators
        secrets = config['secrets']
        strategy_chain_id = int(agent_cfg.get('strategy_chain_id', 195))
        price_feed = build_price_feed(config)
        quote_cfg = config.get('quote', {}) or {}
        quote_client = AggregatorQuoteClient(
            base_url=quote_cfg.get('base_url', 'https://www.okx.com/api/v5/dex/aggregator'),
            chain_id=strategy_chain_id,
            timeout_s=float(quote_cfg.get('timeout_s', 10)),
            fallback=quote_cfg.get('fallback'),
        )
        submitter = SmartAccountSubmitter(
            secrets['private_key'], secrets['smart_accounts'][strategy_chain_id],
            dry_run=bool(agent_cfg.get('dry_run', True)),
        )

        if not agent_cfg['enable_strategies'] and not agent_cfg['enable_multichain']:
            logging.info("Advanced features disabled, running basic swap...")
            await execute_basic_swap(config, registry, quote_client, submitter)
            return

        # 4. Components
        concurrency = int(agent_cfg.get('max_concurrency', 8))
        portfolio = PortfolioTracker(registry, secrets['signer_address'], price_fn=price_feed,
                                     query_timeout_s=query_timeout, max_concurrency=concurrency)
        gas_arbiter = GasArbiter(registry, gas_limits=agent_cfg.get('gas_limits'),
                                 default_gas_limit=int(agent_cfg.get('default_gas_limit', 100000)),
                                 query_timeout_s=query_timeout, max_concurrency=concurrency)
        scanner = ArbitrageScanner(registry, min_profit_pct=int(agent_cfg.get('arbitrage_min_profit_pct', 1)))
        engine = StrategyEngine()

        if agent_cfg['enable_strategies']:
            try:
                journal = TradeLogger(os.path.join(config.get('logging', {}).get('log_dir', 'logs'),
                                                   config.get('logging', {}).get('journal_file', 'executions.csv')))
                trade_context = TradeContext(quote_client, submitter, registry.connection(strategy_chain_id),
                                             strategy_chain_id, journal)
                build_strategies(config, engine, trade_context, portfolio, price_feed)
            except UnknownChain as e:
                logging.warning(f"Failed to initialize trading strategies: {e}")

        agent = SentinelAgent(config, registry, portfolio, gas_arbiter, engine,
                              scanner=scanner, asset_price_fn=price_feed.price)
        logging.info("Sentinel Agent initialized successfully")

        # 5. Run until stopped
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)
        await agent.run(stop_event)

    except FatalConfigurationError as e:
        logging.critical(f"Configuration Error: {e}")
        raise SystemExit(1)
    finally:
        # always release network resources
        if quote_client:
            await quote_client.close()
        if price_feed:
            await price_feed.close()
        if registry:
            await registry.close()
        if journal:
            journal.close()


def cli():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s', stream=sys.stdout)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Shutdown signal received (Ctrl+C). Exiting gracefully.")


if __name__ == "__main__":
    cli()
