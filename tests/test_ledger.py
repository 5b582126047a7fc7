# tests/test_ledger.py

import csv
import logging

import pytest

from core.ledger import CsvLedger, InMemoryLedger
from data_models import BalanceSnapshot, FailedAttempt, Transaction


@pytest.fixture
def snapshot():
    return BalanceSnapshot(account="acct", address="0xwallet", token_symbol="AVAX", balance=10.0, block_number=7, timestamp=1_000.0)


@pytest.fixture
def csv_ledger(tmp_path):
    ledger = CsvLedger(str(tmp_path))
    yield ledger
    # release the file handlers so tmp_path can be cleaned up
    for logger in ledger._loggers.values():
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)


def read_rows(path):
    with open(path, newline="") as f:
        return list(csv.DictReader(f))


def test_in_memory_latest_snapshot_per_account_and_token(snapshot):
    ledger = InMemoryLedger()
    ledger.record_balance_snapshot(snapshot)
    newer = BalanceSnapshot("acct", "0xwallet", "AVAX", 12.0, 8, 1_005.0)
    ledger.record_balance_snapshot(newer)
    ledger.record_balance_snapshot(BalanceSnapshot("acct", "0xwallet", "WETH", 1.0, 8, 1_005.0))

    assert ledger.latest_balance_snapshot("acct", "AVAX") == newer
    assert ledger.latest_balance_snapshot("other", "AVAX") is None


def test_in_memory_tracks_opportunity_updates(make_opportunity):
    ledger = InMemoryLedger()
    opp = make_opportunity()
    ledger.record_opportunity(opp)
    opp.slippage = 0.6
    ledger.update_opportunity(opp)

    assert ledger.opportunity_updates == [{"id": "sess-1", "slippage": 0.6, "expected_profit": 0.0}]


def test_csv_ledger_writes_one_file_per_record_kind(csv_ledger, tmp_path, snapshot, make_opportunity):
    # Arrange
    tx = Transaction("sess", "0xabc", "https://snowtrace.io/tx/0xabc", 9.8, "AVAX", "WETH", 1.0, 1_001.0)
    failed = FailedAttempt("sess", 0.5, "reverted", "C", "AVAX", "WETH", 9.8, 1.0, 1_000.5)

    # Act
    csv_ledger.record_opportunity(make_opportunity())
    csv_ledger.record_transaction(tx)
    csv_ledger.record_failed_attempt(failed)
    csv_ledger.record_balance_snapshot(snapshot)

    # Assert
    transactions = read_rows(tmp_path / "transactions.csv")
    assert transactions[0]["transaction_hash"] == "0xabc"
    assert transactions[0]["link"] == "https://snowtrace.io/tx/0xabc"

    failures = read_rows(tmp_path / "failed_attempts.csv")
    assert failures[0]["slippage"] == "0.5"
    assert failures[0]["reason"] == "reverted"

    opportunities = read_rows(tmp_path / "opportunities.csv")
    assert opportunities[0]["event"] == "created"
    assert opportunities[0]["buy_venue"] == "C"


def test_csv_ledger_recovers_latest_snapshot_from_disk(tmp_path, snapshot):
    first = CsvLedger(str(tmp_path))
    first.record_balance_snapshot(snapshot)

    second = CsvLedger(str(tmp_path))

    assert second.latest_balance_snapshot("acct", "AVAX") == snapshot
    assert second.latest_balance_snapshot("acct", "WETH") is None


class _Collector(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


def test_csv_rows_stay_out_of_the_application_log(csv_ledger, snapshot):
    # Arrange
    root = logging.getLogger()
    collector = _Collector()
    root.addHandler(collector)

    # Act
    try:
        csv_ledger.record_balance_snapshot(snapshot)
    finally:
        root.removeHandler(collector)

    # Assert
    assert all(not lg.propagate for lg in csv_ledger._loggers.values())
    assert not any("0xwallet" in m for m in collector.messages)
