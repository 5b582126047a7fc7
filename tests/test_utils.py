# tests/test_utils.py

import json
import logging

import pytest

from config.logging_config import (
    LOG_FILE,
    STRUCTURED_LOG_FILE,
    JsonFormatter,
    get_logger,
    setup_logging,
)
from core.utils import call_quietly, retry_rpc_call


def _scripted(outcomes):
    """A plain function that raises or returns the next scripted outcome."""
    calls = []

    def rpc():
        calls.append(1)
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return rpc, calls


def test_retry_recovers_from_transient_errors(mocker):
    sleep = mocker.patch("core.utils.time.sleep")
    flaky, calls = _scripted([ConnectionError("reset"), TimeoutError("slow"), 42])

    assert retry_rpc_call(flaky)() == 42
    assert len(calls) == 3
    assert [c[0][0] for c in sleep.call_args_list] == [1.0, 2.0]


def test_retry_gives_up_after_max_retries(mocker):
    mocker.patch("core.utils.time.sleep")
    dead, calls = _scripted([ConnectionError("down")] * 5)

    with pytest.raises(ConnectionError):
        retry_rpc_call(max_retries=2)(dead)()
    assert len(calls) == 2


def test_retry_does_not_touch_logic_errors(mocker):
    sleep = mocker.patch("core.utils.time.sleep")
    bad, _ = _scripted([KeyError("x")])

    with pytest.raises(KeyError):
        retry_rpc_call(bad)()
    sleep.assert_not_called()


def test_call_quietly_logs_and_swallows(caplog):
    logger = logging.getLogger("test.quiet")

    def explode():
        raise RuntimeError("nope")

    with caplog.at_level(logging.ERROR, logger="test.quiet"):
        assert call_quietly(logger, explode) is None

    assert "nope" in caplog.text
    assert call_quietly(logger, None) is None
    assert call_quietly(logger, lambda a, b=0: a + b, 1, b=2) == 3


def test_json_formatter_carries_event_extras():
    record = logging.LogRecord("engine", logging.INFO, __file__, 10, "quote", None, None)
    record.event = "quote"
    record.data = {"slippage": 0.5}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["event"] == "quote"
    assert payload["data"] == {"slippage": 0.5}
    assert payload["level"] == "INFO"


def test_setup_logging_writes_trade_events_to_the_structured_log(tmp_path):
    # Arrange
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    handlers = setup_logging(log_dir=str(tmp_path))

    # Act
    try:
        get_logger("core.trade_executor").trade(
            "swap filled", extra={"event": "swap_succeeded", "data": {"venue": "C"}}
        )
    finally:
        for handler in handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    # Assert
    lines = (tmp_path / STRUCTURED_LOG_FILE).read_text().splitlines()
    entry = json.loads(lines[-1])
    assert entry["level"] == "TRADE"
    assert entry["logger"] == "core.trade_executor"
    assert entry["event"] == "swap_succeeded"
    assert entry["data"] == {"venue": "C"}
    assert "swap filled" in (tmp_path / LOG_FILE).read_text()
