# tests/test_config.py

import asyncio
import copy

import pytest

from core.utils import FatalConfigurationError, async_retry, fan_out, load_config, validate_config
from main_async import build_descriptors, inject_secrets

PRIVATE_KEY = "0x" + "01" * 32
SMART_ACCOUNT = "0x" + "44" * 20

BASE_CONFIG = {
    'agent': {'strategy_chain_id': 195},
    'chains': [
        {'chain_id': 1, 'name': 'Ethereum', 'rpc_url': 'https://eth.default', 'rpc_env': 'ETHEREUM_RPC'},
        {'chain_id': 195, 'name': 'X Layer Testnet', 'rpc_env': 'X_LAYER_RPC'},
    ],
}


@pytest.fixture
def config():
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def env():
    return {'X_LAYER_RPC': 'https://xlayer.test', 'PRIVATE_KEY': PRIVATE_KEY, 'SMART_ACCOUNT': SMART_ACCOUNT}


def test_shipped_config_loads():
    config = load_config()

    assert {c['chain_id'] for c in config['chains']} >= {1, 137, 195}
    assert config['agent']['tick_interval_s'] == 30


def test_missing_config_file_is_fatal(tmp_path):
    with pytest.raises(FatalConfigurationError):
        load_config(str(tmp_path / "nope.yaml"))


def test_malformed_yaml_is_fatal(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("agent: [unclosed\n")

    with pytest.raises(FatalConfigurationError):
        load_config(str(path))


@pytest.mark.parametrize("broken", [
    {'chains': [{'chain_id': 1, 'name': 'x'}]},
    {'agent': {}, 'chains': []},
    {'agent': {}, 'chains': [{'name': 'no id'}]},
    {'agent': {}, 'chains': [{'chain_id': 1, 'name': 'x'}], 'strategies': [{'id': 1, 'type': 'martingale'}]},
])
def test_validate_config_rejects_broken_structure(broken):
    with pytest.raises(FatalConfigurationError):
        validate_config(broken)


def test_inject_secrets_applies_env(config, env):
    env.update({'ETHEREUM_RPC': 'https://eth.private', 'ENABLE_STRATEGIES': 'true', 'ENABLE_MULTICHAIN': 'TRUE'})

    inject_secrets(config, env)

    descriptors = {d.chain_id: d for d in build_descriptors(config)}
    assert descriptors[1].rpc_url == 'https://eth.private'
    assert descriptors[195].rpc_url == 'https://xlayer.test'
    assert config['secrets']['smart_accounts'] == {195: SMART_ACCOUNT}
    assert config['agent']['enable_strategies'] is True
    assert config['agent']['enable_multichain'] is True


def test_toggles_default_to_off(config, env):
    env['ENABLE_STRATEGIES'] = 'yes'

    inject_secrets(config, env)

    assert config['agent']['enable_strategies'] is False
    assert config['agent']['enable_multichain'] is False


def test_chain_specific_smart_account_wins(config, env):
    specific = "0x" + "66" * 20
    env['SMART_ACCOUNT_195'] = specific

    inject_secrets(config, env)

    assert config['secrets']['smart_accounts'][195] == specific


@pytest.mark.parametrize("name, value", [
    ('PRIVATE_KEY', None),
    ('PRIVATE_KEY', 'your_priv_key_here'),
    ('SMART_ACCOUNT', None),
    ('SMART_ACCOUNT', 'not-an-address'),
    ('X_LAYER_RPC', None),
])
def test_missing_or_placeholder_secrets_are_fatal(config, env, name, value):
    if value is None:
        env.pop(name)
    else:
        env[name] = value

    with pytest.raises(FatalConfigurationError):
        inject_secrets(config, env)


@pytest.mark.asyncio
async def test_fan_out_isolates_failures_and_timeouts():
    async def ok():
        return 1

    async def boom():
        raise ConnectionError("down")

    async def slow():
        await asyncio.sleep(5)

    results = await fan_out({'ok': ok, 'boom': boom, 'slow': slow}, timeout=0.05)

    assert results['ok'] == 1
    assert isinstance(results['boom'], ConnectionError)
    assert isinstance(results['slow'], asyncio.TimeoutError)
    assert list(results) == ['ok', 'boom', 'slow']


@pytest.mark.asyncio
async def test_async_retry_recovers_from_transient_errors():
    attempts = []

    @async_retry(max_retries=3, delay=0)
    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert await flaky() == "ok"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_async_retry_does_not_retry_other_errors():
    attempts = []

    @async_retry(max_retries=3, delay=0)
    async def broken():
        attempts.append(1)
        raise KeyError("bad symbol")

    with pytest.raises(KeyError):
        await broken()
    assert len(attempts) == 1
