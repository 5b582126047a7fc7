#data_models.py

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class TradingSession:
    """One continuous run for one account, created once per init_arbitrage()."""
    id: str
    account: str
    address: str
    start_time: float
    end_time: float


@dataclass(frozen=True)
class VenueQuote:
    """Per-venue price derived from pool reserves. Recomputed every cycle."""
    venue: str
    price_in_quote_asset: float   # traded asset priced in held-asset units
    price_in_base_asset: float    # inverse
    base_reserve: float = 0.0
    quote_reserve: float = 0.0


@dataclass(frozen=True)
class PriceView:
    """Ranked view of one cycle's quotes."""
    highest: VenueQuote
    lowest: VenueQuote
    percentage_difference: float
    ranked: List[VenueQuote] = field(default_factory=list)


@dataclass
class ArbitrageOpportunity:
    """A detected spread. `slippage` and `expected_profit` move while the executor retries."""
    id: str
    session_id: str
    buy_venue: str
    sell_venue: str
    percentage_difference: float
    expected_profit: float
    buy_price: float
    sell_price: float
    initial_balance: float
    slippage: float
    token_in: str
    token_out: str
    created_at: float

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class Transaction:
    session_id: str
    transaction_hash: str
    link: str
    amount: float
    token_in: str
    token_out: str
    balance: float
    timestamp: float

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class FailedAttempt:
    session_id: str
    slippage: float
    reason: str
    venue: str
    token_in: str
    token_out: str
    amount_in: float
    amount_out_expected: float
    timestamp: float

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class BalanceSnapshot:
    account: str
    address: str
    token_symbol: str
    balance: float
    block_number: int
    timestamp: float

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class SwapRequest:
    """Everything a ChainWriter needs to submit one swap."""
    token_in: str
    token_out: str
    amount_in: float
    amount_out_min: float
    venue: str
    slippage: float
    is_native_in: bool = False
    is_native_out: bool = False


class LegDirection(str, Enum):
    FORWARD = "forward"   # held -> traded
    REVERSE = "reverse"   # traded -> held


@dataclass
class SwapPlan:
    """
    One leg for the executor. The venue pair is fixed for the lifetime of the
    plan; only slippage moves between attempts.
    """
    session: TradingSession
    direction: LegDirection
    venue: str
    token_in: str
    token_out: str
    amount_in: float
    expected_amount_out: float
    spread: float
    is_native_in: bool = False
    is_native_out: bool = False
    opportunity: Optional[ArbitrageOpportunity] = None
    # reverse legs refuse any quote below this (last recorded held balance)
    min_amount_out: Optional[float] = None


class ExecutionState(str, Enum):
    IDLE = "idle"
    QUOTING = "quoting"
    EVALUATING = "evaluating"
    SWAPPING = "swapping"
    SUCCEEDED = "succeeded"
    ABANDONED = "abandoned"

    @property
    def terminal(self) -> bool:
        return self in (ExecutionState.SUCCEEDED, ExecutionState.ABANDONED)


@dataclass
class ExecutionResult:
    state: ExecutionState
    slippage: float
    attempts: int
    transaction: Optional[Transaction] = None
    failed_attempts: List[FailedAttempt] = field(default_factory=list)
    snapshot: Optional[BalanceSnapshot] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is ExecutionState.SUCCEEDED


@dataclass(frozen=True)
class ExecutionEvent:
    """Structured event emitted by the executor. Formatting is the notifier's job."""
    kind: str
    data: Dict[str, Any]


class CycleStatus(str, Enum):
    SKIPPED = "skipped"
    NO_OPPORTUNITY = "no_opportunity"
    INSUFFICIENT_VENUES = "insufficient_venues"
    REBALANCE_FAILED = "rebalance_failed"
    SUCCEEDED = "succeeded"
    ABANDONED = "abandoned"
    STALLED = "stalled"
    ERROR = "error"


@dataclass
class CycleOutcome:
    status: CycleStatus
    opportunity: Optional[ArbitrageOpportunity] = None
    forward: Optional[ExecutionResult] = None
    reverse: Optional[ExecutionResult] = None
    detail: Optional[str] = None
