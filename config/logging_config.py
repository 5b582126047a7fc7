# logging_config.py

import logging
import json
import os
from logging.handlers import RotatingFileHandler
from typing import List, Optional

TRADE = 25
SUCCESS = 26

LOG_FILE = "arbibot.log"
STRUCTURED_LOG_FILE = "arbibot_structured.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 2


def setup_custom_log_levels():
    """
    Registers TRADE (opportunities, legs) and SUCCESS (filled swaps) between
    INFO and WARNING, plus matching Logger.trade()/Logger.success() methods.
    Safe to call more than once.
    """
    for value, name in ((TRADE, "TRADE"), (SUCCESS, "SUCCESS")):
        if logging.getLevelName(value) != name:
            logging.addLevelName(value, name)
        setattr(logging, name, value)

    def _level_method(value):
        def log_at(self, message, *args, **kws):
            if self.isEnabledFor(value):
                self._log(value, message, args, **kws)
        return log_at

    if not hasattr(logging.Logger, 'trade'):
        logging.Logger.trade = _level_method(TRADE)
    if not hasattr(logging.Logger, 'success'):
        logging.Logger.success = _level_method(SUCCESS)


def get_logger(name: str) -> logging.Logger:
    """Module logger with the custom levels guaranteed to exist."""
    setup_custom_log_levels()
    return logging.getLogger(name)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for the structured log."""
    def format(self, record):
        log_object = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "lineNo": record.lineno
        }
        # executor/engine events ride along as `extra={"event": ..., "data": ...}`
        event = getattr(record, "event", None)
        if event:
            log_object["event"] = event
            log_object["data"] = getattr(record, "data", None)
        if record.exc_info:
            log_object['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(log_object, default=str)


def setup_logging(level: int = logging.INFO, log_dir: Optional[str] = None) -> List[logging.Handler]:
    """
    Points the root logger at a human-readable rotating file, a JSON rotating
    file and the console. Returns the handlers it installed.
    """
    setup_custom_log_levels()

    root = logging.getLogger()
    root.setLevel(level)
    if root.hasHandlers():
        root.handlers.clear()

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    base = log_dir or ""

    human_formatter = logging.Formatter('%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] - %(message)s')

    file_handler = RotatingFileHandler(os.path.join(base, LOG_FILE), maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    file_handler.setFormatter(human_formatter)

    json_handler = RotatingFileHandler(
        os.path.join(base, STRUCTURED_LOG_FILE), maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS
    )
    json_handler.setFormatter(JsonFormatter())

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(human_formatter)

    handlers = [file_handler, json_handler, console_handler]
    for handler in handlers:
        root.addHandler(handler)

    logging.info(f"Logging to {os.path.join(base, LOG_FILE)} and {os.path.join(base, STRUCTURED_LOG_FILE)}.")
    return handlers
