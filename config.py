"""Configuration management for NIM proxy service."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    """Get boolean environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    """Get float environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    """Get integer environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Get string environment variable with fallback."""
    v = os.getenv(name)
    if v is None:
        return default
    return v


@dataclass(frozen=True)
class AppConfig:
    """Application configuration."""

    # NVIDIA NIM settings
    nim_api_base: str
    nim_api_key: str

    # Reasoning behaviour
    show_reasoning: bool
    enable_thinking_mode: bool

    # Request defaults applied when the client omits them
    default_model: str
    default_temperature: float
    default_max_tokens: int

    # Timeouts and limits
    request_timeout_s: float
    max_request_bytes: int

    # Server settings
    port: int
    log_level: str
    log_path: str
    user_agent: str

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        return cls(
            nim_api_base=_env_str("NIM_API_BASE", "https://integrate.api.nvidia.com/v1").rstrip("/"),
            nim_api_key=os.getenv("NIM_API_KEY", ""),
            show_reasoning=_env_bool("SHOW_REASONING", True),
            enable_thinking_mode=_env_bool("ENABLE_THINKING_MODE", True),
            default_model=_env_str("DEFAULT_MODEL", "meta/llama-3.1-70b-instruct"),
            default_temperature=_env_float("DEFAULT_TEMPERATURE", 0.6),
            default_max_tokens=_env_int("DEFAULT_MAX_TOKENS", 4096),
            request_timeout_s=_env_float("REQUEST_TIMEOUT_S", 60.0),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 50 * 1024 * 1024),  # large character cards
            port=_env_int("PORT", 3000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper().strip(),
            log_path=_env_str("LOG_PATH", "/var/log/nim-proxy/nim-proxy.log"),
            user_agent=_env_str("USER_AGENT", "nim-proxy/1.0.0"),
        )

    def validate(self, require_api_key: bool = True) -> None:
        """Validate configuration."""
        if require_api_key and not self.nim_api_key:
            raise ValueError("NIM_API_KEY is required")
        if not self.nim_api_base:
            raise ValueError("NIM_API_BASE must be non-empty")
        if not self.default_model:
            raise ValueError("DEFAULT_MODEL must be non-empty")
        if self.default_temperature < 0:
            raise ValueError("DEFAULT_TEMPERATURE must be >= 0")
        if self.default_max_tokens <= 0:
            raise ValueError("DEFAULT_MAX_TOKENS must be > 0")
        if self.request_timeout_s <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        if self.max_request_bytes <= 0:
            raise ValueError("MAX_REQUEST_BYTES must be > 0")
        if not 0 < self.port < 65536:
            raise ValueError("PORT must be in 1..65535")
        if not self.log_path:
            raise ValueError("LOG_PATH must be non-empty")
        if not self.user_agent:
            raise ValueError("USER_AGENT must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()
