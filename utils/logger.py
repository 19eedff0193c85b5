"""
Logging Setup
=============
Structured logging for the API server, the bot loops and the token feed.

Every event is a short snake_case name plus key/value context:

    logger.info("bot_started", user_id=42, interval=60)

Console output in a terminal, one JSON object per line when LOG_FORMAT=json.
"""

import sys
import logging
from pathlib import Path

import structlog


def setup_logging(log_level: str = "INFO", log_dir: str | None = None, log_format: str = "console") -> None:
    """
    Configure logging for the entire application.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_dir: Optional directory to also write logs/spinner_bot.log
        log_format: "console" (pretty) or "json"
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path / "spinner_bot.log")
        file_handler.setLevel(numeric_level)
        logging.getLogger().addHandler(file_handler)

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso" if log_format == "json" else "%Y-%m-%d %H:%M:%S"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(module_name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger for a specific module.

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
        logger.info("trade_simulated", token="PEPE", amount_sol=0.1)
    """
    return structlog.get_logger(module_name)
