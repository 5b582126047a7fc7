# tests/conftest.py

import pytest

from config.logging_config import setup_custom_log_levels
setup_custom_log_levels()

from config.settings import EngineConfig, TokenConfig, VenueConfig
from core.chain import ChainReader, ChainWriter
from core.ledger import InMemoryLedger
from data_models import ArbitrageOpportunity, LegDirection, SwapPlan, TradingSession


class FakeChain(ChainReader, ChainWriter):
    """
    In-memory chain. Reserves and balances are plain dicts; quotes and swap
    outcomes are consumed in order from scripted lists (an Exception in the
    list is raised instead of returned).
    """

    def __init__(self, reserves=None, balances=None, block_number=100):
        self.reserves = dict(reserves or {})
        self.balances = dict(balances or {})
        self.block_number = block_number
        self.quotes = []
        self.quote_default = None
        self.swap_outcomes = []
        self.quote_calls = []
        self.swap_requests = []
        self.on_swap = None

    def get_reserves(self, venue, pair):
        value = self.reserves[venue]
        if isinstance(value, Exception):
            raise value
        return value

    def get_block_number(self):
        return self.block_number

    def get_balance(self, account, token=None):
        value = self.balances.get(token, 0.0)
        if isinstance(value, Exception):
            raise value
        return value

    def quote_swap(self, venue, token_in, token_out, amount_in):
        self.quote_calls.append((venue, token_in, token_out, amount_in))
        quoted = self.quotes.pop(0) if self.quotes else self.quote_default
        if isinstance(quoted, Exception):
            raise quoted
        if quoted is None:
            quoted = amount_in
        return [amount_in, quoted]

    def execute_swap(self, request):
        self.swap_requests.append(request)
        outcome = self.swap_outcomes.pop(0) if self.swap_outcomes else f"0x{len(self.swap_requests):064x}"
        if isinstance(outcome, Exception):
            raise outcome
        if self.on_swap:
            self.on_swap(request)
        return outcome


class FixedClock:
    """Deterministic clock; advance() moves it forward."""

    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def held_token():
    return TokenConfig(symbol="AVAX", address="0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7", is_native=True)


@pytest.fixture
def traded_token():
    return TokenConfig(symbol="WETH", address="0x49D5c2BdFfac6CE2BFdB6640F4F80f226bc10bAB")


@pytest.fixture
def engine_config(held_token, traded_token):
    """Three venues, 2% threshold, slippage 0.5% -> 1.0% in 0.1% steps."""
    return EngineConfig(
        min_difference_threshold=2.0,
        slippage_start=0.5,
        max_slippage=1.0,
        slippage_step=0.1,
        tick_interval_seconds=5.0,
        gas_reserve=0.2,
        min_held_balance=1.5,
        max_wait_seconds=1200.0,
        session_duration_minutes=30.0,
        venues=(
            VenueConfig(name="A", pair_address="0xpairA", router_address="0xrouterA"),
            VenueConfig(name="B", pair_address="0xpairB", router_address="0xrouterB"),
            VenueConfig(name="C", pair_address="0xpairC", router_address="0xrouterC"),
        ),
        held_token=held_token,
        traded_token=traded_token,
        explorer_tx_url="https://snowtrace.io/tx/{hash}",
    )


@pytest.fixture
def chain():
    """
    Venues priced {A: 10.0, B: 10.5, C: 9.8} held-per-traded; 10 AVAX in the
    wallet; the router quotes 100 units out unless told otherwise.
    """
    fake = FakeChain(
        reserves={"A": (100.0, 1000.0), "B": (100.0, 1050.0), "C": (100.0, 980.0)},
        balances={None: 10.0, "WETH": 0.0},
    )
    fake.quote_default = 100.0
    return fake


@pytest.fixture
def make_chain():
    return FakeChain


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def make_clock():
    return FixedClock


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def session():
    return TradingSession(id="sess", account="acct", address="0xwallet", start_time=1_000.0, end_time=2_800.0)


@pytest.fixture
def make_opportunity(session):
    def _make(**overrides):
        fields = dict(
            id="sess-1",
            session_id=session.id,
            buy_venue="C",
            sell_venue="B",
            percentage_difference=7.14,
            expected_profit=0.0,
            buy_price=9.8,
            sell_price=10.5,
            initial_balance=10.0,
            slippage=0.5,
            token_in="AVAX",
            token_out="WETH",
            created_at=1_000.0,
        )
        fields.update(overrides)
        return ArbitrageOpportunity(**fields)
    return _make


@pytest.fixture
def make_plan(session, make_opportunity):
    """Forward leg on venue C: 9.8 AVAX expected to buy 100 WETH-units at a 7.14% spread."""
    def _make(**overrides):
        fields = dict(
            session=session,
            direction=LegDirection.FORWARD,
            venue="C",
            token_in="AVAX",
            token_out="WETH",
            amount_in=9.8,
            expected_amount_out=100.0,
            spread=7.14,
            is_native_in=True,
            is_native_out=False,
            opportunity=make_opportunity(),
        )
        fields.update(overrides)
        return SwapPlan(**fields)
    return _make
