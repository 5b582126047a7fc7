# evaluator.py
"""
Opportunity evaluation. Everything here is a pure function of its inputs so
the executor can re-run the same checks before every retry.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from config.settings import EngineConfig
from data_models import ArbitrageOpportunity, PriceView, TradingSession


@dataclass(frozen=True)
class Decision:
    go: bool
    expected_profit: float
    amount_in: float
    reason: Optional[str] = None


class OpportunityEvaluator:
    def __init__(self, config: EngineConfig):
        self.logger = logging.getLogger(__name__)
        self.min_difference_threshold = config.min_difference_threshold
        self.gas_reserve = config.gas_reserve
        self.slippage_start = config.slippage_start

    # -------- Formulas --------

    def tradable_amount(self, balance: float) -> float:
        return balance - self.gas_reserve

    def expected_profit(self, balance: float, percentage_difference: float, slippage: float) -> float:
        amount = self.tradable_amount(balance)
        return amount * (percentage_difference / 100.0) - amount * (slippage / 100.0)

    @staticmethod
    def amount_out_min(expected_amount_out: float, slippage: float) -> float:
        return expected_amount_out - expected_amount_out * (slippage / 100.0)

    @staticmethod
    def diff_percentage(amount_out_min: float, quoted_amount_out: float) -> float:
        """How far the router quote falls short of the minimum we would accept, in %."""
        if amount_out_min == 0:
            return 0.0
        return (amount_out_min - quoted_amount_out) / amount_out_min * 100.0

    @staticmethod
    def margin(spread: float, diff_percentage: float, slippage: float) -> float:
        return spread - diff_percentage - slippage

    def still_profitable(self, spread: float, diff_percentage: float, slippage: float) -> bool:
        return self.margin(spread, diff_percentage, slippage) >= 0

    # -------- Decisions --------

    def meets_threshold(self, view: PriceView) -> bool:
        return view.percentage_difference >= self.min_difference_threshold

    def evaluate(self, view: PriceView, balance: float, slippage: Optional[float] = None) -> Decision:
        slippage = self.slippage_start if slippage is None else slippage
        pct = view.percentage_difference
        amount_in = self.tradable_amount(balance)
        profit = self.expected_profit(balance, pct, slippage)

        if not self.meets_threshold(view):
            return Decision(False, profit, amount_in, f"spread {pct:.2f}% below threshold {self.min_difference_threshold}%")
        if amount_in <= 0:
            return Decision(False, profit, amount_in, f"balance {balance} does not cover gas reserve {self.gas_reserve}")
        return Decision(True, profit, amount_in)

    def build_opportunity(
        self,
        opportunity_id: str,
        session: TradingSession,
        view: PriceView,
        balance: float,
        decision: Decision,
        token_in: str,
        token_out: str,
        created_at: float,
    ) -> ArbitrageOpportunity:
        return ArbitrageOpportunity(
            id=opportunity_id,
            session_id=session.id,
            buy_venue=view.lowest.venue,
            sell_venue=view.highest.venue,
            percentage_difference=view.percentage_difference,
            expected_profit=decision.expected_profit,
            buy_price=view.lowest.price_in_quote_asset,
            sell_price=view.highest.price_in_quote_asset,
            initial_balance=balance,
            slippage=self.slippage_start,
            token_in=token_in,
            token_out=token_out,
            created_at=created_at,
        )
