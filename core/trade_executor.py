# core/trade_executor.py
from __future__ import annotations
import time
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from config.logging_config import get_logger
from config.settings import EngineConfig
from core.chain import ChainReader, ChainWriter, amount_out_of
from core.evaluator import OpportunityEvaluator
from core.utils import SwapError, call_quietly
from data_models import (
    BalanceSnapshot,
    ExecutionEvent,
    ExecutionResult,
    ExecutionState,
    FailedAttempt,
    SwapPlan,
    SwapRequest,
    Transaction,
)


@dataclass
class _ExecutionRun:
    """Mutable state of one leg. Lives only for the duration of execute()."""
    plan: SwapPlan
    slippage: float
    state: ExecutionState = ExecutionState.IDLE
    attempts: int = 0
    snapshot: Optional[BalanceSnapshot] = None
    quoted: Optional[float] = None
    amount_out_min: Optional[float] = None
    diff_percentage: float = 0.0
    failed_attempts: List[FailedAttempt] = field(default_factory=list)
    transaction: Optional[Transaction] = None
    reason: Optional[str] = None

    def result(self) -> ExecutionResult:
        return ExecutionResult(
            state=self.state,
            slippage=self.slippage,
            attempts=self.attempts,
            transaction=self.transaction,
            failed_attempts=list(self.failed_attempts),
            snapshot=self.snapshot,
            reason=self.reason,
        )


class SlippageAdaptiveExecutor:
    """
    Executes one swap leg as an explicit state machine:

        IDLE -> QUOTING -> EVALUATING -> SWAPPING -> SUCCEEDED
                   ^                        |
                   +---- (swap failed) -----+        any -> ABANDONED

    The venue is fixed by the plan; only the slippage tolerance moves. Each
    failed swap widens it by `slippage_step` until it passes `max_slippage`.
    The profit margin is re-checked against a fresh router quote before every
    attempt, so a leg that stops paying is abandoned instead of forced through.

    Ledger writes and progress callbacks are fire-and-forget; a broken
    collaborator never changes the outcome of a leg.
    """

    def __init__(
        self,
        chain_reader: ChainReader,
        chain_writer: ChainWriter,
        config: EngineConfig,
        ledger: Any = None,
        evaluator: Optional[OpportunityEvaluator] = None,
        clock: Callable[[], float] = time.time,
        slippage_step: Optional[float] = None,
        max_slippage: Optional[float] = None,
    ):
        self.log = get_logger(__name__)
        self.chain_reader = chain_reader
        self.chain_writer = chain_writer
        self.ledger = ledger
        self.evaluator = evaluator or OpportunityEvaluator(config)
        self.clock = clock
        self.explorer_tx_url = config.explorer_tx_url
        self.slippage_step = float(config.slippage_step if slippage_step is None else slippage_step)
        self.max_slippage = float(config.max_slippage if max_slippage is None else max_slippage)

        self._busy = False
        self._stop_evt = threading.Event()
        self._progress_cb: Optional[Callable[[ExecutionEvent], None]] = None

    # -------- Lifecycle --------

    def set_progress_callback(self, cb: Optional[Callable[[ExecutionEvent], None]]) -> None:
        self._progress_cb = cb

    def request_stop(self) -> None:
        """No new attempt starts after this; a swap already submitted runs to its receipt."""
        self._stop_evt.set()
        self.log.info("Executor received stop signal")

    def reset_stop(self) -> None:
        self._stop_evt.clear()

    def is_stopping(self) -> bool:
        return self._stop_evt.is_set()

    def is_busy(self) -> bool:
        return self._busy

    # -------- Public trading API --------

    def execute(self, plan: SwapPlan) -> ExecutionResult:
        """Run one leg to a terminal state. Blocking; never raises for swap failures."""
        start = plan.opportunity.slippage if plan.opportunity is not None else self.evaluator.slippage_start
        run = _ExecutionRun(plan=plan, slippage=float(start))
        self._busy = True
        try:
            self._emit("leg_started", run, amount_in=plan.amount_in, expected_amount_out=plan.expected_amount_out)
            run.snapshot = self._take_snapshot(plan)
            run.state = ExecutionState.QUOTING

            while not run.state.terminal:
                if run.state is ExecutionState.QUOTING:
                    self._quote(run)
                elif run.state is ExecutionState.EVALUATING:
                    self._evaluate(run)
                elif run.state is ExecutionState.SWAPPING:
                    self._swap(run)

            if run.state is ExecutionState.ABANDONED:
                self._emit("leg_abandoned", run, reason=run.reason)
            return run.result()
        finally:
            self._busy = False

    # -------- States --------

    def _take_snapshot(self, plan: SwapPlan) -> BalanceSnapshot:
        session = plan.session
        token = None if plan.is_native_in else plan.token_in
        snapshot = BalanceSnapshot(
            account=session.account,
            address=session.address,
            token_symbol=plan.token_in,
            balance=float(self.chain_reader.get_balance(session.address, token)),
            block_number=int(self.chain_reader.get_block_number()),
            timestamp=self.clock(),
        )
        call_quietly(self.log, getattr(self.ledger, "record_balance_snapshot", None), snapshot)
        return snapshot

    def _quote(self, run: _ExecutionRun) -> None:
        if self.is_stopping():
            self._abandon(run, "stopped")
            return

        plan = run.plan
        run.attempts += 1
        try:
            amounts = self.chain_writer.quote_swap(plan.venue, plan.token_in, plan.token_out, plan.amount_in)
            run.quoted = amount_out_of(amounts)
        except (SwapError, ValueError) as e:
            self.log.warning(f"Quote on {plan.venue} failed at {run.slippage}% slippage: {e}")
            self._fail(run, f"quote failed: {e}")
            return

        run.amount_out_min = self.evaluator.amount_out_min(plan.expected_amount_out, run.slippage)
        run.diff_percentage = self.evaluator.diff_percentage(run.amount_out_min, run.quoted)
        self._emit(
            "quote",
            run,
            quoted=run.quoted,
            amount_out_min=run.amount_out_min,
            diff_percentage=run.diff_percentage,
        )
        run.state = ExecutionState.EVALUATING

    def _evaluate(self, run: _ExecutionRun) -> None:
        plan = run.plan
        margin = self.evaluator.margin(plan.spread, run.diff_percentage, run.slippage)
        if margin < 0:
            self.log.info(
                f"No margin left on {plan.venue}: spread {plan.spread:.2f}% - diff {run.diff_percentage:.2f}% "
                f"- slippage {run.slippage}% = {margin:.2f}%"
            )
            self._abandon(run, "insufficient_margin")
            return

        if plan.min_amount_out is not None and run.quoted < plan.min_amount_out:
            self.log.info(
                f"Quote {run.quoted:.8f} {plan.token_out} is below the last recorded balance "
                f"{plan.min_amount_out:.8f}; not swapping"
            )
            self._abandon(run, "below_snapshot")
            return

        run.state = ExecutionState.SWAPPING

    def _swap(self, run: _ExecutionRun) -> None:
        plan = run.plan
        request = SwapRequest(
            token_in=plan.token_in,
            token_out=plan.token_out,
            amount_in=plan.amount_in,
            amount_out_min=self.evaluator.amount_out_min(run.quoted, run.slippage),
            venue=plan.venue,
            slippage=run.slippage,
            is_native_in=plan.is_native_in,
            is_native_out=plan.is_native_out,
        )
        try:
            tx_hash = self.chain_writer.execute_swap(request)
        except SwapError as e:
            self.log.warning(f"Swap on {plan.venue} failed at {run.slippage}% slippage: {e.reason}")
            self._fail(run, e.reason)
            return

        run.transaction = self._record_success(run, tx_hash)
        run.state = ExecutionState.SUCCEEDED
        self._emit(
            "swap_succeeded",
            run,
            transaction_hash=tx_hash,
            link=run.transaction.link,
            balance=run.transaction.balance,
        )

    # -------- Transitions --------

    def _fail(self, run: _ExecutionRun, reason: str) -> None:
        plan = run.plan
        attempt = FailedAttempt(
            session_id=plan.session.id,
            slippage=run.slippage,
            reason=reason,
            venue=plan.venue,
            token_in=plan.token_in,
            token_out=plan.token_out,
            amount_in=plan.amount_in,
            amount_out_expected=plan.expected_amount_out,
            timestamp=self.clock(),
        )
        run.failed_attempts.append(attempt)
        call_quietly(self.log, getattr(self.ledger, "record_failed_attempt", None), attempt)
        self._emit("swap_failed", run, reason=reason)

        next_slippage = round(run.slippage + self.slippage_step, 4)
        if next_slippage > self.max_slippage:
            self._abandon(run, "max_slippage")
            return

        run.slippage = next_slippage
        opportunity = plan.opportunity
        if opportunity is not None:
            opportunity.slippage = next_slippage
            opportunity.expected_profit = self.evaluator.expected_profit(
                opportunity.initial_balance, opportunity.percentage_difference, next_slippage
            )
            call_quietly(self.log, getattr(self.ledger, "update_opportunity", None), opportunity)
        run.state = ExecutionState.QUOTING

    def _abandon(self, run: _ExecutionRun, reason: str) -> None:
        run.reason = reason
        run.state = ExecutionState.ABANDONED

    def _record_success(self, run: _ExecutionRun, tx_hash: str) -> Transaction:
        plan = run.plan
        session = plan.session
        token = None if plan.is_native_out else plan.token_out
        balance = call_quietly(self.log, self.chain_reader.get_balance, session.address, token)
        transaction = Transaction(
            session_id=session.id,
            transaction_hash=tx_hash,
            link=self.explorer_tx_url.format(hash=tx_hash),
            amount=plan.amount_in,
            token_in=plan.token_in,
            token_out=plan.token_out,
            balance=float(balance) if balance is not None else 0.0,
            timestamp=self.clock(),
        )
        call_quietly(self.log, getattr(self.ledger, "record_transaction", None), transaction)
        return transaction

    # -------- Utility --------

    def _emit(self, kind: str, run: _ExecutionRun, **data: Any) -> None:
        plan = run.plan
        payload: Dict[str, Any] = {
            "session_id": plan.session.id,
            "direction": plan.direction.value,
            "venue": plan.venue,
            "token_in": plan.token_in,
            "token_out": plan.token_out,
            "slippage": run.slippage,
            "attempt": run.attempts,
        }
        payload.update(data)
        event = ExecutionEvent(kind=kind, data=payload)
        if self._progress_cb:
            try:
                self._progress_cb(event)
            except Exception:
                self.log.exception("Progress callback failed")
        self.log.info(f"[Trade] {kind} {plan.direction.value} on {plan.venue}", extra={"event": kind, "data": payload})
