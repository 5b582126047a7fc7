# settings.py
"""
Typed engine configuration.

config.yaml carries the defaults; environment variables (optionally from a
.env file) override them, the same way API secrets were injected for the
exchange clients. Everything is validated once, at session start, and any
problem surfaces as ConfigError before a cycle is scheduled.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from core.utils import ConfigError

# env var -> trading_parameters key
_ENV_PARAMETERS = {
    "MIN_DIFFERENCE": "min_difference_threshold",
    "SLIPPAGE_START": "slippage_start",
    "MAX_SLIPPAGE": "max_slippage",
    "SLIPPAGE_STEP": "slippage_step",
    "TICK_INTERVAL_SECONDS": "tick_interval_seconds",
    "GAS_RESERVE": "gas_reserve",
    "MIN_HELD_BALANCE": "min_held_balance",
    "MAX_WAIT_SECONDS": "max_wait_seconds",
    "SESSION_DURATION_MINUTES": "session_duration_minutes",
}


@dataclass(frozen=True)
class TokenConfig:
    symbol: str
    address: str
    decimals: int = 18
    is_native: bool = False


@dataclass(frozen=True)
class VenueConfig:
    name: str
    pair_address: str
    router_address: str
    # which slot of getReserves() holds the traded asset
    base_reserve_index: int = 0
    # "eth" -> swapExactETHForTokens, "avax" -> swapExactAVAXForTokens
    native_flavor: str = "eth"


@dataclass(frozen=True)
class EngineConfig:
    min_difference_threshold: float
    slippage_start: float
    max_slippage: float
    slippage_step: float = 0.1
    tick_interval_seconds: float = 5.0
    gas_reserve: float = 0.2
    min_held_balance: float = 1.5
    max_wait_seconds: float = 1200.0
    session_duration_minutes: float = 30.0
    venues: Tuple[VenueConfig, ...] = field(default_factory=tuple)
    held_token: Optional[TokenConfig] = None
    traded_token: Optional[TokenConfig] = None
    rpc_url: Optional[str] = None
    explorer_tx_url: str = "https://snowtrace.io/tx/{hash}"

    @property
    def venue_names(self) -> List[str]:
        return [v.name for v in self.venues]

    def venue(self, name: str) -> VenueConfig:
        for v in self.venues:
            if v.name == name:
                return v
        raise KeyError(name)


def inject_env_overrides(config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Loads the .env file (when reading the real environment) and folds env
    overrides into the raw YAML dict. Per-venue addresses are looked up as
    <VENUE>_PAIR_ADDRESS / <VENUE>_ROUTER_ADDRESS.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    params = config.setdefault("trading_parameters", {})
    for env_name, key in _ENV_PARAMETERS.items():
        if environ.get(env_name) not in (None, ""):
            params[key] = environ[env_name]

    venues = config.setdefault("venues", {}) or {}
    config["venues"] = venues
    enabled = environ.get("ENABLED_VENUES")
    if enabled:
        names = [v.strip() for v in enabled.split(",") if v.strip()]
        config["venues"] = {name: dict(venues.get(name) or {}) for name in names}

    for name, venue in config["venues"].items():
        env_key = name.upper().replace("-", "_")
        pair = environ.get(f"{env_key}_PAIR_ADDRESS")
        router = environ.get(f"{env_key}_ROUTER_ADDRESS")
        if pair:
            venue["pair_address"] = pair
        if router:
            venue["router_address"] = router

    chain = config.setdefault("chain", {}) or {}
    config["chain"] = chain
    if environ.get("MAINNET_RPC_PROVIDER"):
        chain["rpc_url"] = environ["MAINNET_RPC_PROVIDER"]
    return config


def _number(params: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    raw = params.get(key, default)
    if raw is None:
        raise ConfigError(f"CRITICAL ERROR: Missing required key '{key}' in 'trading_parameters'.")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"CRITICAL ERROR: '{key}' must be a number, got {raw!r}.")
    if value < 0:
        raise ConfigError(f"CRITICAL ERROR: '{key}' must not be negative, got {value}.")
    return value


def _token(raw: Any, role: str) -> TokenConfig:
    if raw is None:
        raise ConfigError(f"CRITICAL ERROR: Missing 'tokens.{role}' section.")
    if not isinstance(raw, dict) or not raw.get("symbol") or not raw.get("address"):
        raise ConfigError(f"CRITICAL ERROR: Token '{role}' needs 'symbol' and 'address'.")
    return TokenConfig(
        symbol=str(raw["symbol"]),
        address=str(raw["address"]),
        decimals=int(raw.get("decimals", 18)),
        is_native=bool(raw.get("is_native", False)),
    )


def build_engine_config(config: Dict[str, Any]) -> EngineConfig:
    """Validate the merged config dict and freeze it into an EngineConfig."""
    params = config.get("trading_parameters") or {}

    threshold = _number(params, "min_difference_threshold")
    slippage_start = _number(params, "slippage_start")
    max_slippage = _number(params, "max_slippage")
    step = _number(params, "slippage_step", 0.1)
    interval = _number(params, "tick_interval_seconds", 5.0)

    if step <= 0:
        raise ConfigError("CRITICAL ERROR: 'slippage_step' must be greater than zero.")
    if interval <= 0:
        raise ConfigError("CRITICAL ERROR: 'tick_interval_seconds' must be greater than zero.")
    if slippage_start > max_slippage:
        raise ConfigError(
            f"CRITICAL ERROR: 'slippage_start' ({slippage_start}) exceeds 'max_slippage' ({max_slippage})."
        )

    venues = []
    for name, raw in (config.get("venues") or {}).items():
        raw = raw or {}
        pair = raw.get("pair_address")
        router = raw.get("router_address")
        if not pair or not router:
            raise ConfigError(
                f"CRITICAL ERROR: Missing credentials for venue '{name}'. "
                f"Set {name.upper().replace('-', '_')}_PAIR_ADDRESS and {name.upper().replace('-', '_')}_ROUTER_ADDRESS."
            )
        index = int(raw.get("base_reserve_index", 0))
        if index not in (0, 1):
            raise ConfigError(f"CRITICAL ERROR: 'base_reserve_index' for venue '{name}' must be 0 or 1.")
        venues.append(VenueConfig(
            name=name,
            pair_address=str(pair),
            router_address=str(router),
            base_reserve_index=index,
            native_flavor=str(raw.get("native_flavor", "eth")).lower(),
        ))
    if len(venues) < 2:
        raise ConfigError("CRITICAL ERROR: At least two venues are required to look for a spread.")

    tokens = config.get("tokens") or {}
    chain = config.get("chain") or {}

    return EngineConfig(
        min_difference_threshold=threshold,
        slippage_start=slippage_start,
        max_slippage=max_slippage,
        slippage_step=step,
        tick_interval_seconds=interval,
        gas_reserve=_number(params, "gas_reserve", 0.2),
        min_held_balance=_number(params, "min_held_balance", 1.5),
        max_wait_seconds=_number(params, "max_wait_seconds", 1200.0),
        session_duration_minutes=_number(params, "session_duration_minutes", 30.0),
        venues=tuple(venues),
        held_token=_token(tokens.get("held"), "held"),
        traded_token=_token(tokens.get("traded"), "traded"),
        rpc_url=chain.get("rpc_url"),
        explorer_tx_url=str(chain.get("explorer_tx_url", "https://snowtrace.io/tx/{hash}")),
    )
