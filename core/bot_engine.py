# bot_engine.py
"""
Session engine that orchestrates:
- PriceAggregator (venue reads + ranking)
- OpportunityEvaluator (threshold / expected profit)
- SlippageAdaptiveExecutor (forward leg, held -> traded)
- PositionRebalancer (reverse leg, traded -> held)
and fires the cycle on a fixed interval for one TradingSession.

Design goals:
- One scheduler thread per session; each tick is handed to a worker so ticks
  may overlap in time.
- The job status store is the only cross-tick guard: a tick that cannot
  acquire the session's `running` flag is a no-op.
- A tick never raises. Every failure becomes a CycleOutcome.
- stop() is cooperative; a swap already submitted finishes.
"""

from __future__ import annotations
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from config.logging_config import get_logger
from config.settings import EngineConfig
from core.aggregator import PriceAggregator
from core.evaluator import OpportunityEvaluator
from core.job_status import PENDING, STALLED, JobStatusStore
from core.rebalancer import PositionRebalancer
from core.trade_executor import SlippageAdaptiveExecutor
from core.utils import InsufficientVenues, call_quietly
from data_models import (
    BalanceSnapshot,
    CycleOutcome,
    CycleStatus,
    ExecutionResult,
    LegDirection,
    SwapPlan,
    TradingSession,
)


class ArbitrageBot:
    def __init__(
        self,
        config: EngineConfig,
        aggregator: PriceAggregator,
        evaluator: OpportunityEvaluator,
        executor: SlippageAdaptiveExecutor,
        rebalancer: PositionRebalancer,
        job_store: JobStatusStore,
        *,
        ledger: Any = None,
        notifier: Any = None,
        clock: Callable[[], float] = time.time,
        session_id_factory: Optional[Callable[[], str]] = None,
        callbacks: Optional[Dict[str, Callable[..., None]]] = None,
        max_tick_workers: int = 4,
    ):
        self.log = get_logger(__name__)
        self.config = config
        self.aggregator = aggregator
        self.evaluator = evaluator
        self.executor = executor
        self.rebalancer = rebalancer
        self.job_store = job_store
        self.ledger = ledger
        self.notifier = notifier
        self.clock = clock
        self.session_id_factory = session_id_factory or (lambda: uuid.uuid4().hex)
        self._callbacks: Dict[str, Callable[..., None]] = callbacks or {}
        self.max_tick_workers = max(1, int(max_tick_workers))

        self.session: Optional[TradingSession] = None
        self._reference: Optional[BalanceSnapshot] = None

        # Threading/state
        self._thread: Optional[threading.Thread] = None
        self._pool: Optional[ThreadPoolExecutor] = None
        self._stop_evt = threading.Event()
        self._state_lock = threading.RLock()
        self._running = False
        self._opportunity_seq = 0
        self._last_status = "initialized"

        # Session stats
        self.cycle_count = 0
        self.successful_cycles = 0
        self.abandoned_cycles = 0
        self.skipped_ticks = 0
        self.failed_cycles = 0

        self.executor.set_progress_callback(lambda event: self._emit("on_execution_event", event))
        self.log.info(f"ArbitrageBot initialized (interval={config.tick_interval_seconds}s)")

    # ---------- Public API ----------

    def init_arbitrage(self, account: str, address: str) -> TradingSession:
        """Create the session, run one cycle right away, then start the scheduler."""
        with self._state_lock:
            if self._running and self.session is not None:
                self.log.warning(f"Session {self.session.id} already running; ignoring init_arbitrage()")
                return self.session

            now = self.clock()
            session = TradingSession(
                id=self.session_id_factory(),
                account=account,
                address=address,
                start_time=now,
                end_time=now + self.config.session_duration_minutes * 60.0,
            )
            if self.job_store.is_running(session.id):
                raise RuntimeError(f"Session {session.id} is already marked running in the job store")
            self.job_store.set_status(session.id, PENDING)
            self.session = session
            self._reference = None
            self._opportunity_seq = 0

        self.log.info(f"Session {session.id} started for {account} ({address}); ends at {session.end_time:.0f}")
        self.tick()
        self.start()
        return session

    def start(self) -> None:
        with self._state_lock:
            if self.session is None:
                raise RuntimeError("init_arbitrage() must create a session before start()")
            if self._running:
                self.log.warning("Scheduler already running; ignoring start()")
                return
            self._stop_evt.clear()
            self.executor.reset_stop()
            self._running = True
            self._pool = ThreadPoolExecutor(max_workers=self.max_tick_workers, thread_name_prefix="arb-tick")
            self._thread = threading.Thread(target=self._schedule_loop, name="arb-scheduler", daemon=True)
            self._thread.start()
        self._safe_emit_status("scheduler_started")

    def stop(self, join_timeout: float = 5.0) -> None:
        if not self.is_running():
            self.log.warning("Scheduler not running; ignoring stop()")
            return
        self._halt("stopped")
        t = self._thread
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=join_timeout)
            if t.is_alive():
                self.log.warning(f"Scheduler did not stop within {join_timeout:.1f}s")
        self.log.info("Scheduler stopped")

    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the scheduler stops (session end, stall or stop()). True if it did."""
        return self._stop_evt.wait(timeout)

    # ---------- Scheduling ----------

    def _schedule_loop(self) -> None:
        interval = self.config.tick_interval_seconds
        while not self._stop_evt.wait(interval):
            session = self.session
            if self.clock() >= session.end_time:
                self.log.info(f"Session {session.id} reached its end time")
                self._halt("session_ended")
                break
            if self._check_stall(session):
                break
            try:
                self._pool.submit(self.tick)
            except RuntimeError:
                # pool already shut down by a concurrent stop
                break

    def _halt(self, status: str) -> None:
        with self._state_lock:
            was_running = self._running
            self._running = False
            self._stop_evt.set()
            pool = self._pool
        self.executor.request_stop()
        if pool is not None:
            pool.shutdown(wait=False)
        if was_running:
            self._safe_emit_status(status)

    def tick(self) -> CycleOutcome:
        """One scheduled cycle under the single-flight guard. Never raises."""
        session = self.session
        if session is None:
            return CycleOutcome(CycleStatus.ERROR, detail="no session")

        try:
            if self.clock() >= session.end_time:
                self._halt("session_ended")
                return self._count(CycleOutcome(CycleStatus.SKIPPED, detail="session_ended"))

            if not self.job_store.acquire(session.id):
                if self._check_stall(session):
                    return self._count(CycleOutcome(CycleStatus.STALLED, detail="cycle exceeded max wait"))
                self.log.debug(f"Cycle already running for session {session.id}; skipping tick")
                return self._count(CycleOutcome(CycleStatus.SKIPPED, detail="already_running"))
        except Exception as e:
            self.log.error(f"Job status check failed: {e}", exc_info=True)
            return self._count(CycleOutcome(CycleStatus.ERROR, detail=str(e)))

        try:
            outcome = self.run_cycle(session)
        except Exception as e:
            self.log.exception(f"Cycle failed: {e}")
            outcome = CycleOutcome(CycleStatus.ERROR, detail=str(e))
        finally:
            call_quietly(self.log, self._release, session)

        self._emit("on_cycle", outcome)
        return self._count(outcome)

    def _release(self, session: TradingSession) -> None:
        # a stalled flag set by the watchdog outlives the cycle it caught
        if self.job_store.status(session.id) == STALLED:
            self.log.warning(f"Session {session.id} was marked stalled during the cycle; leaving it stalled")
            return
        self.job_store.set_status(session.id, PENDING)

    def _check_stall(self, session: TradingSession) -> bool:
        since = self.job_store.running_since(session.id)
        if since is None or self.clock() - since <= self.config.max_wait_seconds:
            return False
        self.log.error(
            f"Cycle for session {session.id} has been running for {self.clock() - since:.0f}s "
            f"(max {self.config.max_wait_seconds:.0f}s); marking stalled"
        )
        call_quietly(self.log, self.job_store.set_status, session.id, STALLED)
        self._notify(session, {"kind": "stalled", "reason": f"running since {since:.0f}"})
        self._halt("stalled")
        return True

    # ---------- Cycle ----------

    def run_cycle(self, session: TradingSession) -> CycleOutcome:
        try:
            view = self.aggregator.collect()
        except InsufficientVenues as e:
            self.log.warning(f"Skipping cycle: {e}")
            return CycleOutcome(CycleStatus.INSUFFICIENT_VENUES, detail=str(e))

        # nothing touches the chain below the threshold, leftover sweeps included
        if not self.evaluator.meets_threshold(view):
            reason = (
                f"spread {view.percentage_difference:.2f}% below threshold "
                f"{self.evaluator.min_difference_threshold}%"
            )
            self.log.info(f"No opportunity: {reason}")
            return CycleOutcome(CycleStatus.NO_OPPORTUNITY, detail=reason)

        held, traded = self.rebalancer.balances(session)
        if self.rebalancer.needs_rebalance(held, traded):
            pre = self.rebalancer.rebalance(session, view=view, reference=self._reference)
            if pre is not None and not pre.succeeded:
                return CycleOutcome(CycleStatus.REBALANCE_FAILED, reverse=pre, detail=pre.reason)
            held, traded = self.rebalancer.balances(session)

        decision = self.evaluator.evaluate(view, held)
        if not decision.go:
            self.log.info(f"No opportunity: {decision.reason}")
            return CycleOutcome(CycleStatus.NO_OPPORTUNITY, detail=decision.reason)

        held_token = self.config.held_token
        traded_token = self.config.traded_token
        opportunity = self.evaluator.build_opportunity(
            self._next_opportunity_id(session),
            session,
            view,
            held,
            decision,
            held_token.symbol,
            traded_token.symbol,
            self.clock(),
        )
        call_quietly(self.log, getattr(self.ledger, "record_opportunity", None), opportunity)
        self.log.trade(
            f"Opportunity {opportunity.id}: buy on {opportunity.buy_venue}, sell on {opportunity.sell_venue}, "
            f"spread {opportunity.percentage_difference:.2f}%, expected profit {opportunity.expected_profit:.6f}"
        )

        plan = SwapPlan(
            session=session,
            direction=LegDirection.FORWARD,
            venue=view.lowest.venue,
            token_in=held_token.symbol,
            token_out=traded_token.symbol,
            amount_in=decision.amount_in,
            expected_amount_out=decision.amount_in * view.lowest.price_in_base_asset,
            spread=view.percentage_difference,
            is_native_in=held_token.is_native,
            is_native_out=traded_token.is_native,
            opportunity=opportunity,
        )
        forward = self.executor.execute(plan)
        if forward.snapshot is not None:
            self._reference = forward.snapshot
        self._notify_leg(session, plan, forward)

        # a filled forward leg is always closed; otherwise only leftovers are swept
        reverse = self.rebalancer.rebalance(session, reference=self._reference, force=forward.succeeded)

        if forward.succeeded and (reverse is None or reverse.succeeded):
            status = CycleStatus.SUCCEEDED
        else:
            status = CycleStatus.ABANDONED
        detail = forward.reason if not forward.succeeded else (reverse.reason if reverse else None)
        return CycleOutcome(status, opportunity=opportunity, forward=forward, reverse=reverse, detail=detail)

    # ---------- Helpers ----------

    def _next_opportunity_id(self, session: TradingSession) -> str:
        with self._state_lock:
            self._opportunity_seq += 1
            return f"{session.id}-{self._opportunity_seq}"

    def _notify_leg(self, session: TradingSession, plan: SwapPlan, result: ExecutionResult) -> None:
        payload: Dict[str, Any] = {
            "kind": "swap_succeeded" if result.succeeded else "leg_abandoned",
            "direction": plan.direction.value,
            "venue": plan.venue,
            "token_in": plan.token_in,
            "token_out": plan.token_out,
            "spread": plan.spread,
            "slippage": result.slippage,
            "reason": result.reason,
        }
        if result.transaction is not None:
            payload["link"] = result.transaction.link
            payload["balance"] = result.transaction.balance
        self._notify(session, payload)

    def _notify(self, session: TradingSession, payload: Dict[str, Any]) -> None:
        call_quietly(self.log, getattr(self.notifier, "notify", None), session.id, payload)

    def _count(self, outcome: CycleOutcome) -> CycleOutcome:
        with self._state_lock:
            if outcome.status is CycleStatus.SKIPPED:
                self.skipped_ticks += 1
                return outcome
            self.cycle_count += 1
            if outcome.status is CycleStatus.SUCCEEDED:
                self.successful_cycles += 1
            elif outcome.status in (CycleStatus.ABANDONED, CycleStatus.REBALANCE_FAILED):
                self.abandoned_cycles += 1
            elif outcome.status in (CycleStatus.ERROR, CycleStatus.STALLED):
                self.failed_cycles += 1
        self.log.info(f"Cycle finished: {outcome.status.value}" + (f" ({outcome.detail})" if outcome.detail else ""))
        return outcome

    def _emit(self, name: str, *args, **kwargs) -> None:
        cb = self._callbacks.get(name)
        if cb is None:
            return
        try:
            cb(*args, **kwargs)
        except Exception as e:
            self.log.exception(f"Callback {name} error: {e}")

    def _safe_emit_status(self, status: str) -> None:
        self._last_status = status
        self._emit("on_status", status)

    def get_stats(self) -> Dict[str, Any]:
        with self._state_lock:
            return {
                "session_id": self.session.id if self.session else None,
                "status": self._last_status,
                "cycles": self.cycle_count,
                "successes": self.successful_cycles,
                "abandons": self.abandoned_cycles,
                "skips": self.skipped_ticks,
                "failures": self.failed_cycles,
            }
