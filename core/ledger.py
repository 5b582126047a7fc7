# ledger.py
"""
Append-only record of what the engine did. The engine treats every call as
fire-and-forget (see core.utils.call_quietly), so implementations are free to
raise; nothing they do can stop a trade.
"""

import csv
import io
import logging
import os
import threading
from dataclasses import fields
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional

from data_models import (
    ArbitrageOpportunity,
    BalanceSnapshot,
    FailedAttempt,
    Transaction,
)


class Ledger:
    """Interface. Subclasses override what they persist."""

    def record_opportunity(self, opportunity: ArbitrageOpportunity) -> None:
        raise NotImplementedError

    def update_opportunity(self, opportunity: ArbitrageOpportunity) -> None:
        raise NotImplementedError

    def record_transaction(self, transaction: Transaction) -> None:
        raise NotImplementedError

    def record_failed_attempt(self, attempt: FailedAttempt) -> None:
        raise NotImplementedError

    def record_balance_snapshot(self, snapshot: BalanceSnapshot) -> None:
        raise NotImplementedError

    def latest_balance_snapshot(self, account: str, token_symbol: str) -> Optional[BalanceSnapshot]:
        return None


class InMemoryLedger(Ledger):
    """Keeps every record in lists. Used by tests and dry runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self.opportunities: List[ArbitrageOpportunity] = []
        self.opportunity_updates: List[Dict[str, Any]] = []
        self.transactions: List[Transaction] = []
        self.failed_attempts: List[FailedAttempt] = []
        self.balance_snapshots: List[BalanceSnapshot] = []

    def record_opportunity(self, opportunity):
        with self._lock:
            self.opportunities.append(opportunity)

    def update_opportunity(self, opportunity):
        # the opportunity object itself is mutated in place; keep the trail
        with self._lock:
            self.opportunity_updates.append({
                "id": opportunity.id,
                "slippage": opportunity.slippage,
                "expected_profit": opportunity.expected_profit,
            })

    def record_transaction(self, transaction):
        with self._lock:
            self.transactions.append(transaction)

    def record_failed_attempt(self, attempt):
        with self._lock:
            self.failed_attempts.append(attempt)

    def record_balance_snapshot(self, snapshot):
        with self._lock:
            self.balance_snapshots.append(snapshot)

    def latest_balance_snapshot(self, account, token_symbol):
        with self._lock:
            for snap in reversed(self.balance_snapshots):
                if snap.account == account and snap.token_symbol == token_symbol:
                    return snap
        return None

    def records(self) -> List[Any]:
        """Everything recorded, as plain dicts, for comparisons between runs."""
        with self._lock:
            return (
                [("opportunity", o.to_dict()) for o in self.opportunities]
                + [("opportunity_update", dict(u)) for u in self.opportunity_updates]
                + [("transaction", t.to_dict()) for t in self.transactions]
                + [("failed_attempt", f.to_dict()) for f in self.failed_attempts]
                + [("balance_snapshot", b.to_dict()) for b in self.balance_snapshots]
            )


class CsvLedger(Ledger):
    """
    Writes each record kind to its own rotating CSV file
    (opportunities.csv, transactions.csv, ...), one row per call.
    """

    _KINDS = {
        "opportunities": ArbitrageOpportunity,
        "transactions": Transaction,
        "failed_attempts": FailedAttempt,
        "balances": BalanceSnapshot,
    }

    def __init__(self, directory: str = "ledger", max_bytes: int = 5 * 1024 * 1024, backup_count: int = 2):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)
        self._loggers = {
            kind: self._setup_logger(kind, model, max_bytes, backup_count)
            for kind, model in self._KINDS.items()
        }
        self._latest: Dict[tuple, BalanceSnapshot] = {}
        self._lock = threading.Lock()

    def _path(self, kind: str) -> str:
        return os.path.join(self.directory, f"{kind}.csv")

    def _setup_logger(self, kind: str, model, max_bytes: int, backup_count: int) -> logging.Logger:
        """A private logger per file so CSV rows never reach the application log."""
        path = self._path(kind)
        logger = logging.getLogger(f"ledger.{os.path.abspath(path)}")
        logger.setLevel(logging.INFO)
        logger.propagate = False

        if not logger.handlers:
            handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
            handler.setFormatter(logging.Formatter('%(message)s'))
            logger.addHandler(handler)

        header = [f.name for f in fields(model)]
        if kind == "opportunities":
            header = ["event"] + header
        if not os.path.exists(path) or os.path.getsize(path) == 0:
            logger.info(self._row(header))
        return logger

    @staticmethod
    def _row(values) -> str:
        buf = io.StringIO()
        csv.writer(buf, lineterminator="").writerow(values)
        return buf.getvalue()

    def _write(self, kind: str, record, prefix=()) -> None:
        values = list(prefix) + list(record.to_dict().values())
        self._loggers[kind].info(self._row(values))

    def record_opportunity(self, opportunity):
        self._write("opportunities", opportunity, prefix=("created",))

    def update_opportunity(self, opportunity):
        self._write("opportunities", opportunity, prefix=("updated",))

    def record_transaction(self, transaction):
        self._write("transactions", transaction)

    def record_failed_attempt(self, attempt):
        self._write("failed_attempts", attempt)

    def record_balance_snapshot(self, snapshot):
        with self._lock:
            self._latest[(snapshot.account, snapshot.token_symbol)] = snapshot
        self._write("balances", snapshot)

    def latest_balance_snapshot(self, account, token_symbol):
        with self._lock:
            cached = self._latest.get((account, token_symbol))
        if cached is not None:
            return cached
        return self._scan_balances(account, token_symbol)

    def _scan_balances(self, account: str, token_symbol: str) -> Optional[BalanceSnapshot]:
        """Cold start: recover the newest matching row written by a previous process."""
        path = self._path("balances")
        if not os.path.exists(path):
            return None
        latest = None
        with open(path, newline="") as f:
            for row in csv.DictReader(f):
                if row.get("account") == account and row.get("token_symbol") == token_symbol:
                    latest = row
        if latest is None:
            return None
        return BalanceSnapshot(
            account=latest["account"],
            address=latest["address"],
            token_symbol=latest["token_symbol"],
            balance=float(latest["balance"]),
            block_number=int(latest["block_number"]),
            timestamp=float(latest["timestamp"]),
        )
