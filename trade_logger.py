# trade_logger.py

import logging
import os
from logging.handlers import RotatingFileHandler

from data_models import ExecutionRecord

HEADER = "timestamp_utc,strategy_id,strategy_type,chain_id,token_in,token_out,amount,status,tx_hash"


class TradeLogger:
    """
    A dedicated logger to record strategy executions to a structured CSV file.
    """
    def __init__(self, filename: str = "executions.csv"):
        self.filename = filename
        self.logger = self._setup_logger()
        self._write_header()

    def _setup_logger(self) -> logging.Logger:
        # One logger per file so several journals can coexist (tests use tmp paths)
        trade_logger = logging.getLogger(f'trade_logger.{os.path.abspath(self.filename)}')
        trade_logger.setLevel(logging.INFO)

        # Prevent logs from propagating to the root logger
        trade_logger.propagate = False

        if not trade_logger.handlers:
            handler = RotatingFileHandler(self.filename, maxBytes=5*1024*1024, backupCount=2)
            handler.setFormatter(logging.Formatter('%(message)s'))
            trade_logger.addHandler(handler)

        return trade_logger

    def _write_header(self):
        """Writes the CSV header if the file is new or empty."""
        if os.path.exists(self.filename) and os.path.getsize(self.filename) > 0:
            return
        self.logger.info(HEADER)

    def log_execution(self, record: ExecutionRecord):
        if not isinstance(record, ExecutionRecord):
            self.logger.error("log_execution received an object that was not an ExecutionRecord.")
            return

        log_entry = (
            f"{record.timestamp},"
            f"{record.strategy_id},"
            f"{record.strategy_type},"
            f"{record.chain_id},"
            f"{record.token_in},"
            f"{record.token_out},"
            f"{record.amount},"
            f"{record.status},"
            f"{record.tx_hash}"
        )
        self.logger.info(log_entry)

    def close(self):
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
