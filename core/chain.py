# chain.py
"""
Collaborator interfaces the engine consumes to talk to the chain.

The engine only ever sees these two classes. `core.web3_client` provides the
concrete UniswapV2-router implementation; tests use in-memory fakes.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from data_models import SwapRequest


class ChainReader(ABC):
    """Read-only RPC surface."""

    @abstractmethod
    def get_reserves(self, venue: str, pair: str) -> Tuple[float, float]:
        """Raw (reserve0, reserve1) of `pair` on `venue`, in token units."""

    @abstractmethod
    def get_block_number(self) -> int:
        ...

    @abstractmethod
    def get_balance(self, account: str, token: Optional[str] = None) -> float:
        """Native balance when `token` is None, otherwise the ERC-20 balance of `token`."""


class ChainWriter(ABC):
    """Quoting and swap submission. Both calls raise SwapError on failure."""

    @abstractmethod
    def quote_swap(self, venue: str, token_in: str, token_out: str, amount_in: float) -> Sequence[float]:
        """Router amounts along the [token_in, token_out] path; the last one is the amount out."""

    @abstractmethod
    def execute_swap(self, request: SwapRequest) -> str:
        """Submit the swap, wait for a confirmed receipt and return the transaction hash."""


def amount_out_of(amounts: Sequence[float]) -> float:
    """Last hop of a router quote."""
    values: List[float] = list(amounts or [])
    if not values:
        raise ValueError("router returned an empty amounts array")
    return float(values[-1])
