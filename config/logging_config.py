# logging_config.py

import logging
import json
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional


def setup_custom_log_levels():
    """
    Adds custom TRADE and SUCCESS log levels and methods to Python's logging.
    Called by the agent entry point and by the test suite.
    """
    # --- Custom Log Levels ---
    TRADE = 25
    SUCCESS = 26

    # Check if levels are already added to avoid errors on re-import
    if not hasattr(logging, 'TRADE'):
        logging.addLevelName(TRADE, "TRADE")
        logging.TRADE = TRADE

    if not hasattr(logging, 'SUCCESS'):
        logging.addLevelName(SUCCESS, "SUCCESS")
        logging.SUCCESS = SUCCESS

    # --- Custom Logger Methods ---
    def trade(self, message, *args, **kws):
        if self.isEnabledFor(TRADE):
            self._log(TRADE, message, args, **kws)

    def success(self, message, *args, **kws):
        if self.isEnabledFor(SUCCESS):
            self._log(SUCCESS, message, args, **kws)

    if not hasattr(logging.Logger, 'trade'):
        logging.Logger.trade = trade

    if not hasattr(logging.Logger, 'success'):
        logging.Logger.success = success


# --- JSON Formatter for Structured Logging ---
class JsonFormatter(logging.Formatter):
    """Formats log records into a JSON string."""

    # Extra attributes that chain/strategy scoped log calls attach via `extra=`
    CONTEXT_FIELDS = ("chain_id", "strategy_id", "strategy_type")

    def format(self, record):
        log_object = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
            "lineNo": record.lineno
        }
        for field in self.CONTEXT_FIELDS:
            if hasattr(record, field):
                log_object[field] = getattr(record, field)
        if record.exc_info:
            log_object['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(log_object)


def setup_logging(settings: Optional[Dict[str, Any]] = None):
    """
    Configures the root logger for dual file output (human-readable and JSON)
    plus the console.

    settings (the `logging` section of config.yaml), all optional:
        level: INFO
        log_dir: logs
        human_file: agent.log
        json_file: agent_structured.log
        max_bytes: 5242880
        backup_count: 2
    """
    settings = settings or {}
    setup_custom_log_levels()

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, str(settings.get('level', 'INFO')).upper(), logging.INFO))

    # Clear any existing handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    log_dir = settings.get('log_dir', 'logs')
    os.makedirs(log_dir, exist_ok=True)
    max_bytes = int(settings.get('max_bytes', 5 * 1024 * 1024))
    backup_count = int(settings.get('backup_count', 2))

    # --- Human-Readable Log File Handler ---
    log_format_string = '%(asctime)s - %(levelname)s - [%(module)s:%(lineno)d] - %(message)s'
    human_formatter = logging.Formatter(log_format_string)
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, settings.get('human_file', 'agent.log')),
        maxBytes=max_bytes, backupCount=backup_count
    )
    file_handler.setFormatter(human_formatter)
    logger.addHandler(file_handler)

    # --- Structured JSON Log File Handler ---
    json_handler = RotatingFileHandler(
        os.path.join(log_dir, settings.get('json_file', 'agent_structured.log')),
        maxBytes=max_bytes, backupCount=backup_count
    )
    json_handler.setFormatter(JsonFormatter())
    logger.addHandler(json_handler)

    # --- Console Handler ---
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(human_formatter)
    logger.addHandler(console_handler)

    logging.info("Logging configured with human-readable, JSON, and console outputs.")
