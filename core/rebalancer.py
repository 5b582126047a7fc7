# rebalancer.py
"""
Position rebalancer:
- detects traded asset left over from an incomplete round trip while the held
  balance is below its operating minimum
- sells it back where it is priced highest, through the same slippage-adaptive
  executor the forward leg uses
- refuses any quote that returns less of the held asset than the last
  recorded snapshot balance
"""

import logging
from typing import Any, Optional, Tuple

from config.settings import EngineConfig
from core.aggregator import PriceAggregator
from core.chain import ChainReader
from core.trade_executor import SlippageAdaptiveExecutor
from core.utils import call_quietly
from data_models import (
    BalanceSnapshot,
    ExecutionResult,
    LegDirection,
    PriceView,
    SwapPlan,
    TradingSession,
)


class PositionRebalancer:
    def __init__(
        self,
        chain_reader: ChainReader,
        executor: SlippageAdaptiveExecutor,
        config: EngineConfig,
        aggregator: Optional[PriceAggregator] = None,
        ledger: Any = None,
        notifier: Any = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.chain_reader = chain_reader
        self.executor = executor
        self.aggregator = aggregator
        self.ledger = ledger
        self.notifier = notifier
        self.min_held_balance = config.min_held_balance
        self.held_token = config.held_token
        self.traded_token = config.traded_token

    def needs_rebalance(self, held_balance: float, traded_balance: float) -> bool:
        return traded_balance > 0 and held_balance < self.min_held_balance

    def balances(self, session: TradingSession) -> Tuple[float, float]:
        """(held, traded) balances of the session's wallet."""
        held = self.chain_reader.get_balance(
            session.address, None if self.held_token.is_native else self.held_token.symbol
        )
        traded = self.chain_reader.get_balance(session.address, self.traded_token.symbol)
        return float(held), float(traded)

    def reference_snapshot(self, session: TradingSession, reference: Optional[BalanceSnapshot] = None) -> Optional[BalanceSnapshot]:
        if reference is not None:
            return reference
        latest = getattr(self.ledger, "latest_balance_snapshot", None)
        return call_quietly(self.logger, latest, session.account, self.held_token.symbol)

    def rebalance(
        self,
        session: TradingSession,
        view: Optional[PriceView] = None,
        reference: Optional[BalanceSnapshot] = None,
        force: bool = False,
    ) -> Optional[ExecutionResult]:
        """
        Sell the traded balance back into the held asset when needed (or always,
        with force=True, as the closing leg of a round trip). Returns None when
        there was nothing to do.
        """
        held, traded = self.balances(session)
        if traded <= 0:
            self.logger.debug(f"No {self.traded_token.symbol} to sell back.")
            return None
        if not force and not self.needs_rebalance(held, traded):
            self.logger.debug(
                f"Balances ok ({held:.6f} {self.held_token.symbol}, {traded:.6f} {self.traded_token.symbol}); no rebalance."
            )
            return None

        if view is None:
            if self.aggregator is None:
                raise RuntimeError("PositionRebalancer needs a PriceAggregator to fetch a fresh price view")
            view = self.aggregator.collect()

        reference = self.reference_snapshot(session, reference)
        # the quote alone has to cover the recorded balance
        floor = reference.balance if reference is not None else None
        if reference is None:
            self.logger.warning("No recorded balance snapshot; reverse leg runs without a floor.")

        sell = view.highest
        self.logger.warning(
            f"Rebalancing: selling {traded:.6f} {self.traded_token.symbol} on {sell.venue} "
            f"({held:.6f} {self.held_token.symbol} held, minimum {self.min_held_balance})."
        )
        plan = SwapPlan(
            session=session,
            direction=LegDirection.REVERSE,
            venue=sell.venue,
            token_in=self.traded_token.symbol,
            token_out=self.held_token.symbol,
            amount_in=traded,
            expected_amount_out=traded * sell.price_in_quote_asset,
            spread=view.percentage_difference,
            is_native_in=self.traded_token.is_native,
            is_native_out=self.held_token.is_native,
            min_amount_out=floor,
        )
        result = self.executor.execute(plan)
        self._report(session, plan, result, reference)
        return result

    def _report(self, session: TradingSession, plan: SwapPlan, result: ExecutionResult, reference: Optional[BalanceSnapshot]) -> None:
        payload = {
            "kind": "rebalanced" if result.succeeded else "leg_abandoned",
            "direction": plan.direction.value,
            "venue": plan.venue,
            "token_in": plan.token_in,
            "token_out": plan.token_out,
            "spread": plan.spread,
            "slippage": result.slippage,
            "reason": result.reason,
        }
        if result.succeeded:
            new_balance = result.transaction.balance
            payload["link"] = result.transaction.link
            payload["balance"] = new_balance
            if reference is not None:
                payload["profit"] = new_balance - reference.balance
            self.logger.info(f"Rebalance done on {plan.venue}; {self.held_token.symbol} balance now {new_balance:.6f}")
        else:
            self.logger.warning(f"Rebalance on {plan.venue} abandoned: {result.reason}")
        call_quietly(self.logger, getattr(self.notifier, "notify", None), session.id, payload)
