# utils.py

import asyncio
import functools
import os
from logging import getLogger
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

import aiohttp
import ccxt
import yaml


# --- Custom Exceptions ---
class SentinelError(Exception):
    """Base class for all agent errors."""
    pass


class FatalConfigurationError(SentinelError):
    """Missing or invalid configuration detected at startup."""
    pass


class ChainIdentityMismatch(SentinelError):
    """The endpoint reported a different chain id than the one configured."""

    def __init__(self, name: str, expected: int, actual: int):
        super().__init__(f"chain ID mismatch for {name}: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class UnknownChain(SentinelError):
    def __init__(self, chain_id: int):
        super().__init__(f"chain {chain_id} is not registered")
        self.chain_id = chain_id


class NoAvailableChain(SentinelError):
    pass


class TransientQueryFailure(SentinelError):
    """A per-chain query failed or timed out. The chain is skipped for this round."""

    def __init__(self, chain_id: int, cause: BaseException):
        super().__init__(f"query on chain {chain_id} failed: {cause!r}")
        self.chain_id = chain_id
        self.cause = cause


class StrategyExecutionFailure(SentinelError):
    def __init__(self, strategy_id: int, message: str):
        super().__init__(f"strategy #{strategy_id}: {message}")
        self.strategy_id = strategy_id


TRANSIENT_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ConnectionError,
    ccxt.NetworkError,
)


# --- Decorator for async network retries ---
def async_retry(max_retries: int = 3, delay: float = 1.0, backoff: float = 2.0):
    """Decorator to retry async network calls with exponential backoff."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            wait = delay
            for i in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except TRANSIENT_ERRORS as e:
                    getLogger(__name__).warning(
                        f"{func.__name__} failed (network issue): {e!r}. Retrying... ({i+1}/{max_retries})"
                    )
                    if i == max_retries - 1:
                        getLogger(__name__).error(f"{func.__name__} failed after {max_retries} retries.")
                        raise
                    await asyncio.sleep(wait)
                    wait *= backoff
        return wrapper
    return decorator


# --- Bounded fan-out / fan-in ---
async def fan_out(
    calls: Dict[Hashable, Callable[[], Awaitable[Any]]],
    timeout: Optional[float] = 10.0,
    limit: int = 8,
) -> Dict[Hashable, Any]:
    """
    Runs every keyed coroutine factory concurrently, at most `limit` at a time,
    each bounded by `timeout` seconds.

    Returns {key: result or exception} once every call has finished or timed
    out. A failing or slow call never affects the others. If the caller is
    cancelled, all in-flight calls are cancelled and nothing is returned.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(factory):
        async with semaphore:
            if timeout is None:
                return await factory()
            return await asyncio.wait_for(factory(), timeout=timeout)

    keys = list(calls.keys())
    tasks = [asyncio.ensure_future(_run(calls[key])) for key in keys]
    try:
        results = await asyncio.gather(*tasks, return_exceptions=True)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise
    return dict(zip(keys, results))


# --- Configuration Loading ---
REQUIRED_SECTIONS = ("agent", "chains")


def validate_config(config):
    """Validates the structure of the agent config file."""
    if not isinstance(config, dict):
        raise FatalConfigurationError("CRITICAL ERROR: config.yaml must contain a mapping.")

    for section in REQUIRED_SECTIONS:
        if section not in config:
            raise FatalConfigurationError(f"CRITICAL ERROR: Missing required section '{section}' in config.yaml.")

    if not isinstance(config['chains'], list) or not config['chains']:
        raise FatalConfigurationError("CRITICAL ERROR: 'chains' must be a non-empty list.")

    for entry in config['chains']:
        for key in ('chain_id', 'name'):
            if key not in entry:
                raise FatalConfigurationError(f"CRITICAL ERROR: Chain entry {entry!r} is missing '{key}'.")

    for entry in config.get('strategies', []) or []:
        if entry.get('type') not in ('dca', 'grid', 'rebalance'):
            raise FatalConfigurationError(f"CRITICAL ERROR: Unknown strategy type in {entry!r}.")
        if 'id' not in entry:
            raise FatalConfigurationError(f"CRITICAL ERROR: Strategy entry {entry!r} is missing 'id'.")

    return True


def load_config(filepath: str = None):
    """Loads and validates the configuration file."""
    if filepath is None:
        base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))  # project root
        filepath = os.path.join(base_dir, "config", "config.yaml")
    try:
        with open(filepath, 'r') as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise FatalConfigurationError(f"CRITICAL ERROR: Configuration file '{filepath}' not found.")
    except yaml.YAMLError as e:
        raise FatalConfigurationError(f"CRITICAL ERROR: Could not decode '{filepath}'. YAML error: {e}")
    validate_config(config)
    return config
