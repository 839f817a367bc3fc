"""Streaming transcoder that folds `reasoning_content` deltas into `content`.

Upstream NIM models stream their deliberation in a separate
`choices[0].delta.reasoning_content` field. Clients that only understand
`content` would lose it, so the transcoder rewrites every SSE event: reasoning
text is moved into `content` and wrapped in ``<think>`` / ``</think>`` markers.

Pipeline per stream:
    raw bytes -> LineReassembler -> extract_data_payload -> decode_event
              -> ReasoningMerger -> encode_event -> downstream

One StreamTranscoder per in-flight request. Instances hold no shared state.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from logger import request_log

THINK_OPEN = "<think>\n"
THINK_CLOSE = "</think>\n\n"

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
DONE_FRAME = b"data: [DONE]\n\n"


@dataclass(frozen=True)
class TranscoderOptions:
    """Per-stream behaviour switches."""

    show_reasoning: bool = True


class LineReassembler:
    """Turn arbitrarily split byte chunks into complete lines.

    The buffer holds at most one unterminated line. Splitting happens on raw
    bytes, so a chunk boundary inside a multi-byte character is harmless.
    """

    def __init__(self) -> None:
        self._pieces: List[bytes] = []
        self._pending = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet resolved into a line."""
        return self._pending

    def feed(self, chunk: bytes) -> List[str]:
        """Append a chunk and return every line it completed, in order.

        Only the new chunk is searched for line breaks; a long pending line
        is joined once, when its terminator arrives.
        """
        if not chunk:
            return []
        if b"\n" not in chunk:
            self._pieces.append(chunk)
            self._pending += len(chunk)
            return []

        head, *rest = chunk.split(b"\n")
        tail = rest.pop()
        complete = [b"".join(self._pieces) + head]
        complete.extend(rest)

        self._pieces = [tail] if tail else []
        self._pending = len(tail)
        return [ln.decode("utf-8", errors="replace") for ln in complete]

    def flush(self) -> Optional[str]:
        """Return the leftover unterminated line, if any, and empty the buffer."""
        rest = b"".join(self._pieces)
        self._pieces = []
        self._pending = 0
        if not rest:
            return None
        return rest.decode("utf-8", errors="replace")


def extract_data_payload(line: str) -> Optional[str]:
    """
    Return the payload of a `data: ` line, or None for anything else.

    Blank separators, comments and other SSE fields are not events for us.
    """
    stripped = line.strip()
    if not stripped.startswith(DATA_PREFIX):
        return None
    return stripped[len(DATA_PREFIX):]


def decode_event(payload: str) -> Optional[Dict[str, Any]]:
    """Best-effort JSON decode; anything that is not an object yields None.

    Pathologically nested payloads exhaust the decoder's recursion limit and
    are treated as malformed too.
    """
    try:
        obj = json.loads(payload)
    except (ValueError, RecursionError):
        return None
    if not isinstance(obj, dict):
        return None
    return obj


def encode_event(event: Mapping[str, Any]) -> bytes:
    """Frame an event as a single SSE `data:` message with compact JSON."""
    body = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    return f"{DATA_PREFIX}{body}\n\n".encode("utf-8")


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _without_reasoning(choice: Any) -> Any:
    if not isinstance(choice, dict):
        return choice
    delta = choice.get("delta")
    if not isinstance(delta, dict) or "reasoning_content" not in delta:
        return choice
    return {**choice, "delta": {k: v for k, v in delta.items() if k != "reasoning_content"}}


class ReasoningMerger:
    """
    Two-state machine (closed / open) relocating reasoning text into content.

    closed + reasoning  -> "<think>\\n" + R, open
    open   + reasoning  -> R, stays open
    open   + no reason. -> "</think>\\n\\n" + C, closed
    closed + no reason. -> C, closed

    When one delta carries both fields, reasoning is handled first and the
    content then closes the block.
    """

    def __init__(self, show_reasoning: bool = True) -> None:
        self._show_reasoning = show_reasoning
        self.reasoning_open = False

    def merge_delta(self, delta: Mapping[str, Any]) -> Tuple[str, bool]:
        """Return (new content, whether the open/closed state changed)."""
        reasoning = _text(delta.get("reasoning_content"))
        content = _text(delta.get("content"))

        if not self._show_reasoning:
            return content, False

        if reasoning:
            transitioned = False
            out = reasoning
            if not self.reasoning_open:
                out = THINK_OPEN + reasoning
                self.reasoning_open = True
                transitioned = True
            if content:
                out += THINK_CLOSE + content
                self.reasoning_open = False
                transitioned = True
            return out, transitioned

        if self.reasoning_open:
            self.reasoning_open = False
            return THINK_CLOSE + content, True

        return content, False

    def merge(self, event: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Produce the rewritten event, or None when it carries nothing to send.

        The input mapping is never modified. An event is suppressed only when
        its new content is empty, the state did not change, and the first
        choice has neither a finish_reason nor tool_calls.
        """
        choices = event.get("choices")
        first = choices[0] if isinstance(choices, list) and choices else None
        delta = first.get("delta") if isinstance(first, dict) else None
        if not isinstance(delta, dict):
            return dict(event)

        content, transitioned = self.merge_delta(delta)

        new_delta = {k: v for k, v in delta.items() if k != "reasoning_content"}
        new_delta["content"] = content

        if (
            not content
            and not transitioned
            and first.get("finish_reason") is None
            and not delta.get("tool_calls")
        ):
            return None

        new_choices = [{**first, "delta": new_delta}]
        new_choices.extend(_without_reasoning(ch) for ch in choices[1:])
        return {**event, "choices": new_choices}


class StreamTranscoder:
    """Incremental SSE rewriter for one upstream stream.

    Push bytes with feed(); call finish() once when upstream ends or fails.
    Both return the downstream frames to write, in order. Neither raises on
    bad input: malformed events are dropped.
    """

    def __init__(self, options: TranscoderOptions | None = None, req_id: str = "-") -> None:
        self._options = options or TranscoderOptions()
        self._log = request_log(req_id)
        self._lines = LineReassembler()
        self._merger = ReasoningMerger(self._options.show_reasoning)
        self._finished = False
        self.events_in = 0
        self.events_out = 0
        self.events_dropped = 0

    @property
    def reasoning_open(self) -> bool:
        return self._merger.reasoning_open

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, chunk: bytes) -> List[bytes]:
        if self._finished:
            return []
        return self._transcode_lines(self._lines.feed(chunk))

    def finish(self) -> List[bytes]:
        """Flush the pending line and discard state. No closing marker is added."""
        if self._finished:
            return []
        self._finished = True
        rest = self._lines.flush()
        frames = self._transcode_lines([rest]) if rest is not None else []
        if self._merger.reasoning_open:
            self._log.debug("Stream ended with reasoning block still open")
        self._merger = ReasoningMerger(self._options.show_reasoning)
        return frames

    def transcode_line(self, line: str) -> Optional[bytes]:
        """Rewrite one complete line into a frame, or None if nothing is sent."""
        payload = extract_data_payload(line)
        if payload is None:
            return None
        self.events_in += 1

        if payload == DONE_SENTINEL:
            self.events_out += 1
            return DONE_FRAME

        event = decode_event(payload)
        if event is None:
            self.events_dropped += 1
            self._log.debug("Dropping malformed SSE payload payload=%r", payload[:200])
            return None

        merged = self._merger.merge(event)
        if merged is None:
            return None
        self.events_out += 1
        return encode_event(merged)

    def _transcode_lines(self, lines: List[str]) -> List[bytes]:
        frames: List[bytes] = []
        for line in lines:
            frame = self.transcode_line(line)
            if frame is not None:
                frames.append(frame)
        return frames
