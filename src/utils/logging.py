"""
Logging setup for the odds collector.
"""

import logging
import time
from pathlib import Path
from typing import Optional

import orjson
import structlog
from structlog.processors import TimeStamper


def setup_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines when True, coloured console output otherwise
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class MetricsLogger:
    """
    Appends collector status snapshots to a JSON-lines file.
    """

    def __init__(self, log_dir: str = "logs", filename: str = "collector-metrics.jsonl"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._metrics_file = self.log_dir / filename

    def log_status(self, component: str, status: dict, timestamp_ms: Optional[int] = None) -> None:
        entry = {
            "timestamp_ms": timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
            "component": component,
            "status": status,
        }
        with open(self._metrics_file, "ab") as f:
            f.write(orjson.dumps(entry, default=str) + b"\n")

    @property
    def path(self) -> Path:
        return self._metrics_file
