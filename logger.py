"""Logging configuration for NIM proxy service."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import colorlog


class RequestContextFilter(logging.Filter):
    """Guarantee a req_id attribute so the format string works for every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "req_id"):
            record.req_id = "-"
        return True


def request_log(req_id: str, name: str = "nim_proxy") -> logging.LoggerAdapter:
    """Logger bound to one request; its lines carry req_id in the log prefix."""
    return logging.LoggerAdapter(logging.getLogger(name), {"req_id": req_id or "-"})


def setup_logging(log_path: str | None = None) -> logging.Logger:
    """
    Configure logging with rotation.

    Logs are written to /var/log/nim-proxy/nim-proxy.log with:
      - maxBytes: 1 MB
      - backupCount: 3

    LOG_LEVEL=DISABLE disables logging entirely.
    """
    level_name = os.getenv("LOG_LEVEL", "INFO").upper().strip()
    logger = logging.getLogger("nim_proxy")

    logger.handlers.clear()

    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
        return logger

    logging.disable(logging.NOTSET)
    level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(level)

    if not log_path:
        log_path = "/var/log/nim-proxy/nim-proxy.log"

    handler, fallback_err = _create_log_handler(log_path)
    handler.setFormatter(_create_log_formatter())
    handler.addFilter(RequestContextFilter())

    logger.addHandler(handler)
    if fallback_err is not None:
        logger.warning(
            "Failed to open log file %r (%s). Falling back to stdout/stderr logging.",
            log_path,
            fallback_err,
        )
    logger.propagate = False
    return logger


def _create_log_handler(log_path: str) -> tuple[logging.Handler, Exception | None]:
    """Create log handler with fallback to StreamHandler on error."""
    try:
        return RotatingFileHandler(
            log_path,
            maxBytes=1_048_576,  # 1 MB
            backupCount=3,
            encoding="utf-8",
        ), None
    except OSError as e:
        return logging.StreamHandler(), e


def _create_log_formatter() -> logging.Formatter:
    """Create log formatter, colored unless LOG_COLOR is off."""
    if os.getenv("LOG_COLOR", "true").lower() in ("true", "1", "yes"):
        return colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s [%(req_id)s] - %(message)s",
            reset=True,
            log_colors={
                'DEBUG': 'cyan',
                'INFO': 'green',
                'WARNING': 'yellow',
                'ERROR': 'red',
                'CRITICAL': 'red,bg_white',
            },
            style='%'
        )
    return logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(req_id)s] - %(message)s")


def mask_secret(s: str, keep_start: int = 6, keep_end: int = 4) -> str:
    """Mask a secret string, keeping only start and end characters."""
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= keep_start + keep_end:
        return "*" * len(s)
    return f"{s[:keep_start]}...{s[-keep_end:]}"
