"""Upstream NVIDIA NIM API communication."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict

import httpx

from config import AppConfig
from models import ModelMapper

log = logging.getLogger("nim_proxy")


def build_nim_request(body: Dict[str, Any], nim_model: str, config: AppConfig) -> Dict[str, Any]:
    """
    Remap an OpenAI chat-completion body to the NIM request shape.

    Only the fields NIM needs are forwarded. Thinking mode is requested through
    chat_template_kwargs when enabled.
    """
    temperature = body.get("temperature")
    max_tokens = body.get("max_tokens")

    payload: Dict[str, Any] = {
        "model": nim_model,
        "messages": body.get("messages"),
        "temperature": config.default_temperature if temperature is None else temperature,
        "max_tokens": max_tokens or config.default_max_tokens,
        "stream": bool(body.get("stream", False)),
    }
    if config.enable_thinking_mode:
        payload["extra_body"] = {"chat_template_kwargs": {"thinking": True}}
    return payload


class UpstreamClient:
    """Handle communication with the NIM API."""

    def __init__(self, config: AppConfig, mapper: ModelMapper) -> None:
        self._config = config
        self._mapper = mapper

    def get_headers(self) -> Dict[str, str]:
        """Get default headers for the NIM API."""
        return {
            "Authorization": f"Bearer {self._config.nim_api_key}",
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
        }

    async def chat_completion(
        self,
        client: httpx.AsyncClient,
        body: Dict[str, Any],
    ) -> httpx.Response:
        """
        Send chat completion request to NIM.

        For streaming requests, the response must be streamed to avoid buffering.
        """
        nim_model = self._mapper.resolve(body.get("model"))
        payload = build_nim_request(body, nim_model, self._config)
        stream = payload["stream"]

        t0 = time.time()

        req = client.build_request(
            "POST",
            f"{self._config.nim_api_base}/chat/completions",
            headers=self.get_headers(),
            json=payload,
        )
        resp = await client.send(req, stream=stream)

        dt = (time.time() - t0) * 1000
        log.info(
            "Upstream chat model=%s stream=%s status=%s ms=%.1f",
            nim_model,
            stream,
            resp.status_code,
            dt,
        )

        if resp.status_code != 200:
            log.warning(
                "Upstream chat error model=%s status=%s content-type=%s",
                nim_model,
                resp.status_code,
                resp.headers.get("content-type", ""),
            )

        return resp

    @staticmethod
    async def read_error_snippet(
        resp: httpx.Response, limit: int = 2000, timeout_s: float = 2.0
    ) -> str:
        """Best-effort: read small error body without risking a hang."""
        try:
            raw = await asyncio.wait_for(resp.aread(), timeout=timeout_s)
        except (asyncio.TimeoutError, httpx.HTTPError):
            return ""
        return raw.decode("utf-8", errors="replace")[:limit]
