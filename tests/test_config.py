# tests/test_config.py

import pytest

from config.settings import build_engine_config, inject_env_overrides
from core.utils import ConfigError, load_config


@pytest.fixture
def raw_config():
    """Minimal YAML-equivalent dict with two venues and both tokens."""
    return {
        "trading_parameters": {
            "min_difference_threshold": 2.0,
            "slippage_start": 0.5,
            "max_slippage": 1.0,
        },
        "tokens": {
            "held": {"symbol": "AVAX", "address": "0xwavax", "is_native": True},
            "traded": {"symbol": "WETH", "address": "0xweth"},
        },
        "venues": {
            "trader-joe": {"router_address": "0xrouter1", "native_flavor": "avax"},
            "sushi": {"router_address": "0xrouter2"},
        },
        "chain": {"rpc_url": "https://rpc.example"},
    }


@pytest.fixture
def environ():
    return {
        "TRADER_JOE_PAIR_ADDRESS": "0xpair1",
        "SUSHI_PAIR_ADDRESS": "0xpair2",
    }


def test_defaults_and_env_addresses(raw_config, environ):
    cfg = build_engine_config(inject_env_overrides(raw_config, environ))

    assert cfg.slippage_step == 0.1
    assert cfg.tick_interval_seconds == 5.0
    assert cfg.gas_reserve == 0.2
    assert cfg.min_held_balance == 1.5
    assert cfg.max_wait_seconds == 1200.0
    assert cfg.venue_names == ["trader-joe", "sushi"]
    assert cfg.venue("trader-joe").pair_address == "0xpair1"
    assert cfg.venue("trader-joe").native_flavor == "avax"
    assert cfg.held_token.is_native and cfg.held_token.symbol == "AVAX"
    assert cfg.rpc_url == "https://rpc.example"


def test_env_overrides_numbers_and_rpc(raw_config, environ):
    environ.update({
        "MIN_DIFFERENCE": "3.5",
        "SLIPPAGE_STEP": "0.2",
        "MAX_SLIPPAGE": "2",
        "MAINNET_RPC_PROVIDER": "https://other.example",
    })

    cfg = build_engine_config(inject_env_overrides(raw_config, environ))

    assert cfg.min_difference_threshold == 3.5
    assert cfg.slippage_step == 0.2
    assert cfg.max_slippage == 2.0
    assert cfg.rpc_url == "https://other.example"


def test_enabled_venues_filters_the_list(raw_config, environ):
    raw_config["venues"]["pangolin"] = {"router_address": "0xrouter3"}
    environ.update({"ENABLED_VENUES": "sushi, pangolin", "PANGOLIN_PAIR_ADDRESS": "0xpair3"})

    cfg = build_engine_config(inject_env_overrides(raw_config, environ))

    assert cfg.venue_names == ["sushi", "pangolin"]


def test_missing_venue_credentials_fail_at_startup(raw_config):
    with pytest.raises(ConfigError, match="Missing credentials for venue 'trader-joe'"):
        build_engine_config(inject_env_overrides(raw_config, {}))


@pytest.mark.parametrize(
    "key, value",
    [
        ("min_difference_threshold", "abc"),
        ("min_difference_threshold", -1),
        ("slippage_step", 0),
        ("tick_interval_seconds", 0),
        ("slippage_start", 5.0),   # above max_slippage
    ],
)
def test_invalid_parameters_are_rejected(raw_config, environ, key, value):
    raw_config["trading_parameters"][key] = value

    with pytest.raises(ConfigError):
        build_engine_config(inject_env_overrides(raw_config, environ))


def test_single_venue_is_rejected(raw_config, environ):
    environ["ENABLED_VENUES"] = "sushi"

    with pytest.raises(ConfigError, match="At least two venues"):
        build_engine_config(inject_env_overrides(raw_config, environ))


def test_token_without_address_is_rejected(raw_config, environ):
    raw_config["tokens"]["traded"] = {"symbol": "WETH"}

    with pytest.raises(ConfigError):
        build_engine_config(inject_env_overrides(raw_config, environ))


@pytest.mark.parametrize("drop", ["held", "traded"])
def test_missing_token_is_rejected_at_startup(raw_config, environ, drop):
    del raw_config["tokens"][drop]

    with pytest.raises(ConfigError, match=f"tokens.{drop}"):
        build_engine_config(inject_env_overrides(raw_config, environ))


def test_missing_tokens_section_is_rejected_at_startup(raw_config, environ):
    del raw_config["tokens"]

    with pytest.raises(ConfigError, match="tokens.held"):
        build_engine_config(inject_env_overrides(raw_config, environ))


def test_load_config_reads_the_shipped_yaml():
    config = load_config()

    assert "trading_parameters" in config
    assert set(config["venues"]) == {"trader-joe", "pangolin", "sushi"}


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "nope.yaml"))


def test_load_config_rejects_bad_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("trading_parameters: [unclosed\n")

    with pytest.raises(ConfigError):
        load_config(str(path))


def test_load_config_requires_trading_parameters(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("venues: {}\n")

    with pytest.raises(ConfigError, match="trading_parameters"):
        load_config(str(path))
