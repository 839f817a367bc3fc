"""Model name mapping from OpenAI-style ids to NVIDIA NIM models."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional

log = logging.getLogger("nim_proxy")

MODEL_MAPPING: Dict[str, str] = {
    "gpt-3.5-turbo": "nvidia/llama-3.1-nemotron-ultra-253b-v1",
    "gpt-4": "qwen/qwen3-coder-480b-a35b-instruct",
    "gpt-4-turbo": "moonshotai/kimi-k2-instruct-0905",
    "gpt-4o": "deepseek-ai/deepseek-v3.1",
    "claude-3-opus": "openai/gpt-oss-120b",
    "claude-3-sonnet": "openai/gpt-oss-20b",
    "gemini-pro": "qwen/qwen3-next-80b-a3b-thinking",
    "glm-5": "z-ai/glm5",
}


class ModelMapper:
    """Resolve client-facing model names to upstream NIM model ids."""

    def __init__(self, default_model: str, mapping: Optional[Mapping[str, str]] = None) -> None:
        self._default_model = default_model
        self._mapping: Dict[str, str] = dict(MODEL_MAPPING if mapping is None else mapping)

    @property
    def model_ids(self) -> List[str]:
        return list(self._mapping)

    def resolve(self, model: Any) -> str:
        """Map a requested model name; unknown or missing names use the default model."""
        if isinstance(model, str) and model in self._mapping:
            return self._mapping[model]
        log.debug("No mapping for model=%r, using default=%s", model, self._default_model)
        return self._default_model

    def to_models_list(self) -> Dict[str, Any]:
        """OpenAI-compatible /v1/models payload."""
        created = int(time.time() * 1000)
        return {
            "object": "list",
            "data": [
                {"id": m, "object": "model", "created": created, "owned_by": "nvidia-nim-proxy"}
                for m in self._mapping
            ],
        }
