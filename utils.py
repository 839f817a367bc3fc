"""Utility functions for NIM proxy."""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from logger import mask_secret

log = logging.getLogger("nim_proxy")


def load_env_files() -> None:
    """Load .env files from program and current directory."""
    this_dir = Path(__file__).resolve().parent
    p1 = this_dir / ".env"
    p2 = Path.cwd() / ".env"

    loaded_any = False
    if p1.exists():
        loaded_any = load_dotenv(dotenv_path=str(p1), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p1))
    else:
        log.info("No .env in program directory: %s", str(p1))

    if p2.exists() and p2 != p1:
        loaded_any = load_dotenv(dotenv_path=str(p2), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p2))
    elif p2 != p1:
        log.info("No .env in current directory: %s", str(p2))

    if not loaded_any:
        log.info(".env not loaded (not found or no variables applied).")


def dump_config(config) -> None:
    """Log effective configuration at startup."""
    log.info("=== NIM proxy startup config ===")
    log.info("NIM_API_BASE=%s", config.nim_api_base)
    log.info(
        "NIM_API_KEY_set=%s value=%s len=%s",
        bool(config.nim_api_key),
        mask_secret(config.nim_api_key),
        len(config.nim_api_key or ""),
    )
    log.info("SHOW_REASONING=%s", config.show_reasoning)
    log.info("ENABLE_THINKING_MODE=%s", config.enable_thinking_mode)
    log.info("DEFAULT_MODEL=%s", config.default_model)
    log.info("DEFAULT_TEMPERATURE=%s", config.default_temperature)
    log.info("DEFAULT_MAX_TOKENS=%s", config.default_max_tokens)
    log.info("REQUEST_TIMEOUT_S=%s", config.request_timeout_s)
    log.info("MAX_REQUEST_BYTES=%s", config.max_request_bytes)
    log.info("PORT=%s", config.port)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("LOG_PATH=%s", config.log_path)
    log.info("USER_AGENT=%s", config.user_agent)
    log.info("WorkingDir=%s", str(Path.cwd()))
    log.info("ProgramDir=%s", str(Path(__file__).resolve().parent))
    log.info("================================")
