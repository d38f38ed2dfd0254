"""
Logging Utilities
==================

Configures logging for the imbalance engine.

Trade, risk-exit and valuation events carry a ``fields`` mapping on the log
record so they stay machine-parseable; the trades log file writes them as
one JSON object per line.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional


# Custom log levels
TRADE = 25  # Between INFO and WARNING


def setup_logging(
    log_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    main_log_file: str = "engine.log",
    trades_log_file: str = "trades.jsonl",
    max_size_mb: int = 50,
    backup_count: int = 5,
) -> None:
    """
    Set up logging for the engine.

    Creates:
    - Console handler for key events
    - Main log file for all events
    - Trades log file with one JSON record per trade, risk exit and valuation
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logging.addLevelName(TRADE, "TRADE")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, console_level.upper()))
    console_handler.setFormatter(ColoredFormatter(
        "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s",
        datefmt="%H:%M:%S"
    ))
    root_logger.addHandler(console_handler)

    main_handler = RotatingFileHandler(
        log_path / main_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
    )
    main_handler.setLevel(getattr(logging, file_level.upper()))
    main_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)-25s | %(funcName)-20s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    root_logger.addHandler(main_handler)

    # Structured events go to a JSON-lines file in addition to the console
    events_handler = RotatingFileHandler(
        log_path / trades_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
    )
    events_handler.setLevel(logging.DEBUG)
    events_handler.setFormatter(JsonFieldsFormatter())
    for name in ("trades", "performance"):
        event_logger = logging.getLogger(name)
        for handler in list(event_logger.handlers):
            event_logger.removeHandler(handler)
        event_logger.addHandler(events_handler)
        event_logger.propagate = True

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.info(f"Logging initialized | console={console_level} | file={file_level} | dir={log_dir}")


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to console output."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
        "TRADE": "\033[34m",     # Blue
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Color a copy so file handlers sharing the record see the plain name
        record = logging.makeLogRecord(record.__dict__)
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        return super().format(record)


class JsonFieldsFormatter(logging.Formatter):
    """Renders a record's ``fields`` mapping as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "logged_at": datetime.fromtimestamp(record.created, tz=timezone.utc).replace(tzinfo=None).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        fields = getattr(record, "fields", None)
        if fields:
            payload.update(fields)
        else:
            payload["message"] = record.getMessage()
        return json.dumps(payload, default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def format_fields(event: str, fields: dict[str, Any]) -> str:
    """Render ``EVENT | key=value | ...`` for human-facing handlers."""
    parts = [event]
    for key, value in fields.items():
        if key == "event":
            continue
        if isinstance(value, float):
            parts.append(f"{key}={value:.6g}")
        elif isinstance(value, datetime):
            parts.append(f"{key}={value.isoformat()}")
        else:
            parts.append(f"{key}={value}")
    return " | ".join(parts)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class TradeLogger:
    """Specialized logger for trade events."""

    def __init__(self):
        self.logger = logging.getLogger("trades")

    def _emit(self, event: str, level: int, fields: dict[str, Any]) -> None:
        fields = {"event": event, **fields}
        self.logger.log(level, format_fields(event, fields), extra={"fields": fields})

    def log_fill(
        self,
        action: str,
        size: float,
        symbol: str,
        price: float,
        cost: float,
        timestamp: datetime,
        reason: str = "",
        position_id: Optional[int] = None,
        cash: Optional[float] = None,
    ) -> None:
        """Log a ledger execution."""
        self._emit("TRADE_EXECUTED", TRADE, {
            "action": action,
            "size": size,
            "symbol": symbol,
            "price": price,
            "cost": cost,
            "reason": reason,
            "position_id": position_id,
            "cash": cash,
            "timestamp": timestamp,
        })

    def log_risk_exit(
        self,
        trigger: str,
        symbol: str,
        position_id: int,
        entry_price: float,
        price: float,
        pnl_pct: float,
    ) -> None:
        """Log a take-profit or stop-loss trigger."""
        self._emit("RISK_EXIT", TRADE, {
            "action": trigger,
            "symbol": symbol,
            "position_id": position_id,
            "entry_price": entry_price,
            "price": price,
            "pnl_pct": pnl_pct,
            "timestamp": datetime.now(timezone.utc).replace(tzinfo=None),
        })


class PerformanceLogger:
    """Logger for valuation and loop metrics."""

    def __init__(self):
        self.logger = logging.getLogger("performance")

    def log_valuation(
        self,
        symbol: str,
        portfolio_value: float,
        cash: float,
        open_positions: int,
        bid: float,
    ) -> None:
        """Log a portfolio valuation."""
        fields = {
            "event": "VALUATION",
            "action": "valuation",
            "symbol": symbol,
            "portfolio_value": portfolio_value,
            "cash": cash,
            "open_positions": open_positions,
            "price": bid,
            "timestamp": datetime.now(timezone.utc).replace(tzinfo=None),
        }
        self.logger.info(format_fields("VALUATION", fields), extra={"fields": fields})

    def log_latency(self, operation: str, latency_ms: float) -> None:
        """Log operation latency."""
        self.logger.debug(f"LATENCY | {operation} | {latency_ms:.2f}ms")


# Global instances
trade_logger = TradeLogger()
performance_logger = PerformanceLogger()
