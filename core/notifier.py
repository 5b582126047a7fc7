# notifier.py

import logging
from typing import Any, Dict, Iterable, List

from config.logging_config import get_logger
from core.utils import call_quietly


def format_summary(payload: Dict[str, Any]) -> str:
    """Render a notifier payload as the short text block a human reads."""
    kind = payload.get("kind", "update")
    lines: List[str] = [f"[{kind.upper()}] session {payload.get('session_id', '?')}"]

    if payload.get("venue"):
        pair = f"{payload.get('token_in', '?')} -> {payload.get('token_out', '?')}"
        lines.append(f"Venue: {payload['venue']} ({pair})")
    if payload.get("spread") is not None:
        lines.append(f"Spread: {float(payload['spread']):.2f}%")
    if payload.get("slippage") is not None:
        lines.append(f"Slippage: {payload['slippage']}%")
    if payload.get("link"):
        lines.append(f"Tx: {payload['link']}")
    if payload.get("balance") is not None:
        lines.append(f"Balance: {float(payload['balance']):.6f}")
    if payload.get("profit") is not None:
        lines.append(f"Profit: {float(payload['profit']):+.6f}")
    if payload.get("reason"):
        lines.append(f"Reason: {payload['reason']}")
    return "\n".join(lines)


class Notifier:
    def notify(self, session_id: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes notifications to the application log at the TRADE / SUCCESS levels."""

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or get_logger("notifications")

    def notify(self, session_id, payload):
        payload = dict(payload)
        payload.setdefault("session_id", session_id)
        text = format_summary(payload)
        extra = {"event": payload.get("kind", "update"), "data": payload}
        if payload.get("kind") in ("swap_succeeded", "rebalanced"):
            self.logger.success(text, extra=extra)
        elif payload.get("kind") == "stalled":
            self.logger.error(text, extra=extra)
        else:
            self.logger.trade(text, extra=extra)


class CompositeNotifier(Notifier):
    """Fans one notification out to several notifiers; one failing does not stop the rest."""

    def __init__(self, notifiers: Iterable[Notifier]):
        self.logger = logging.getLogger(__name__)
        self.notifiers = list(notifiers)

    def notify(self, session_id, payload):
        for notifier in self.notifiers:
            call_quietly(self.logger, notifier.notify, session_id, payload)
