# utils.py

import os
import time
import functools
import logging
from logging import getLogger
from typing import Any, Callable, Optional

import yaml
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout as RequestsTimeout


# --- Custom Exceptions ---
class ArbitrageError(Exception):
    """Base class for engine errors."""
    pass

class ConfigError(ArbitrageError):
    """Custom exception for configuration file errors."""
    pass

class PriceReadError(ArbitrageError):
    """A venue's reserve/price read failed; the venue is dropped for this cycle."""
    def __init__(self, venue: str, message: str):
        super().__init__(f"{venue}: {message}")
        self.venue = venue

class InsufficientVenues(ArbitrageError):
    """Fewer than two venues produced a usable quote."""
    pass

class SwapError(ArbitrageError):
    """A quote or swap call failed. `reason` carries the venue's revert string when there is one."""
    def __init__(self, reason: str, venue: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.venue = venue


# --- Decorator for RPC Retries ---
_TRANSIENT_RPC_ERRORS = (RequestsConnectionError, RequestsTimeout, ConnectionError, TimeoutError)

def retry_rpc_call(func=None, *, max_retries: int = 3, delay: float = 1.0):
    """Decorator to retry read-only RPC calls with exponential backoff."""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            wait = delay
            for i in range(max_retries):
                try:
                    return fn(*args, **kwargs)
                except _TRANSIENT_RPC_ERRORS as e:
                    getLogger(__name__).warning(f"RPC call {fn.__name__} failed (network issue): {e}. Retrying... ({i+1}/{max_retries})")
                    if i == max_retries - 1:
                        getLogger(__name__).error(f"RPC call {fn.__name__} failed after {max_retries} retries.")
                        raise
                    time.sleep(wait)
                    wait *= 2
        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


def call_quietly(logger: logging.Logger, fn: Optional[Callable[..., Any]], *args, **kwargs) -> Any:
    """
    Invoke a collaborator (ledger, notifier, callback) whose failure must never
    reach the trading state machine. Errors are logged and None is returned.
    """
    if fn is None:
        return None
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        logger.error(f"{getattr(fn, '__qualname__', fn)} failed: {e}", exc_info=True)
        return None


# --- Configuration Loading ---
def validate_config(config):
    """Validates the structure of the config file."""
    if not isinstance(config, dict):
        raise ConfigError("CRITICAL ERROR: config.yaml must contain a mapping at the top level.")
    if "trading_parameters" not in config or not isinstance(config["trading_parameters"], dict):
        raise ConfigError("CRITICAL ERROR: Missing or invalid section 'trading_parameters' in config.yaml.")
    if "venues" in config and not isinstance(config["venues"], dict):
        raise ConfigError("CRITICAL ERROR: Section 'venues' must be a mapping of venue name to settings.")
    if "tokens" in config and not isinstance(config["tokens"], dict):
        raise ConfigError("CRITICAL ERROR: Section 'tokens' must be a mapping with 'held' and 'traded' entries.")
    return True

def load_config(filepath: str = None):
    """Loads and validates the configuration file."""
    if filepath is None:
        base_dir = os.path.dirname(os.path.dirname(__file__))  # project root
        filepath = os.path.join(base_dir, "config", "config.yaml")
    try:
        with open(filepath, 'r') as f:
            config = yaml.safe_load(f)
        validate_config(config)
        return config
    except FileNotFoundError:
        raise ConfigError(f"CRITICAL ERROR: Configuration file '{filepath}' not found.")
    except yaml.YAMLError as e:
        raise ConfigError(f"CRITICAL ERROR: Could not decode '{filepath}'. YAML error: {e}")
