"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Test environment setup (before the app module loads config at import time)
- Shared fixtures available to all test modules
"""

import json
import os
import sys
from pathlib import Path

import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

os.environ.setdefault("NIM_API_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_PATH", "/tmp/nim_proxy_test.log")
os.environ.setdefault("LOG_COLOR", "false")


def make_event(content=None, reasoning=None, **delta_extra):
    """Build a chat.completion.chunk dict with a single choice."""
    delta = dict(delta_extra)
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning_content"] = reasoning
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "deepseek-ai/deepseek-v3.1",
        "choices": [{"index": 0, "delta": delta, "finish_reason": None}],
    }


def sse_line(obj) -> str:
    return "data: " + json.dumps(obj)


def parse_frames(raw: bytes):
    """Split a transcoded byte stream into decoded events ("[DONE]" kept as-is)."""
    out = []
    for frame in raw.decode("utf-8").split("\n\n"):
        if not frame:
            continue
        assert frame.startswith("data: ")
        payload = frame[len("data: "):]
        out.append(payload if payload == "[DONE]" else json.loads(payload))
    return out


def contents(events):
    return [ev["choices"][0]["delta"]["content"] for ev in events if ev != "[DONE]"]


@pytest.fixture(scope="session")
def project_root_path():
    """Get project root path."""
    return project_root
