"""
NIM proxy service (OpenAI-compatible) -> NVIDIA NIM as upstream.

Clients speak the OpenAI chat-completions API; requests are remapped to a NIM
model and forwarded. Reasoning output (`reasoning_content`) is folded into
`content` inside <think>...</think> so clients that ignore the reasoning
field still see it.
"""

from __future__ import annotations

import contextlib
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from config import AppConfig, load_config
from logger import request_log, setup_logging
from models import ModelMapper
from sse_handler import SSE_HEADERS, SSEStreamer
from transcoder import THINK_CLOSE, THINK_OPEN, StreamTranscoder, TranscoderOptions
from upstream import UpstreamClient
from utils import dump_config, load_env_files

# Load environment
load_env_files()

# Load configuration
config = load_config()
config.validate(require_api_key=False)

# Initialize logging
log = setup_logging(config.log_path)
dump_config(config)

model_mapper = ModelMapper(config.default_model)
upstream_client = UpstreamClient(config, model_mapper)
sse_streamer = SSEStreamer()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for FastAPI application."""
    if not config.nim_api_key:
        log.warning("NIM_API_KEY is not set; upstream will likely reject requests")
    log.info("Proxy active on port %s", config.port)

    yield

    log.info("Proxy shutting down")


app = FastAPI(
    title="nim-proxy-service",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(message: str, status_code: int = 500) -> JSONResponse:
    """OpenAI-style error envelope."""
    return JSONResponse(status_code=status_code, content={"error": {"message": message}})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(str(exc.detail), exc.status_code)


def new_upstream_http_client(cfg: AppConfig) -> httpx.AsyncClient:
    """Client for one upstream call; streaming reads get no read timeout."""
    connect_timeout = min(30.0, float(cfg.request_timeout_s))
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=connect_timeout,
            write=connect_timeout,
            pool=connect_timeout,
            read=None,
        )
    )


def reshape_completion(
    upstream: Dict[str, Any],
    requested_model: Any,
    show_reasoning: bool,
) -> Dict[str, Any]:
    """Convert a whole NIM chat.completion into the OpenAI shape."""
    choices: List[Dict[str, Any]] = []
    raw_choices = upstream.get("choices")
    if not isinstance(raw_choices, list):
        raw_choices = []
    for choice in raw_choices:
        if not isinstance(choice, dict):
            continue
        message = choice.get("message")
        if not isinstance(message, dict):
            message = {}
        content = message.get("content") or ""
        reasoning = message.get("reasoning_content")
        if show_reasoning and isinstance(reasoning, str) and reasoning:
            content = f"{THINK_OPEN}{reasoning}\n{THINK_CLOSE}{content}"
        choices.append(
            {
                "index": choice.get("index"),
                "message": {"role": message.get("role"), "content": content},
                "finish_reason": choice.get("finish_reason"),
            }
        )

    return {
        "id": f"chatcmpl-{int(time.time() * 1000)}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": requested_model,
        "choices": choices,
        "usage": upstream.get("usage"),
    }


@app.get("/health")
async def health() -> Dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "reasoning": config.show_reasoning,
        "thinking": config.enable_thinking_mode,
    }


@app.get("/v1/models")
async def v1_models() -> Dict[str, Any]:
    """List client-facing model names."""
    return model_mapper.to_models_list()


async def _check_request_size(request: Request) -> None:
    cl = request.headers.get("content-length")
    if not cl:
        return
    try:
        n = int(cl)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid Content-Length header: {cl!r}")
    if n < 0:
        raise HTTPException(status_code=400, detail="Invalid Content-Length: must be non-negative")
    if n > config.max_request_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Request too large: {n} bytes (max {config.max_request_bytes})",
        )


async def handle_streaming_request(
    client: httpx.AsyncClient,
    body: Dict[str, Any],
    req_id: str,
) -> Response:
    resp = await upstream_client.chat_completion(client, body)
    if resp.status_code != 200:
        snippet = await upstream_client.read_error_snippet(resp)
        await resp.aclose()
        with contextlib.suppress(Exception):
            await client.aclose()
        return _error_response(snippet or f"Upstream error {resp.status_code}")

    transcoder = StreamTranscoder(
        TranscoderOptions(show_reasoning=config.show_reasoning),
        req_id=req_id,
    )
    return StreamingResponse(
        sse_streamer.transcode_stream(
            client,
            resp,
            transcoder,
            req_id=req_id,
            model_id=model_mapper.resolve(body.get("model")),
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def handle_whole_request(
    client: httpx.AsyncClient,
    body: Dict[str, Any],
    req_id: str,
) -> Response:
    try:
        resp = await upstream_client.chat_completion(client, body)
        if resp.status_code != 200:
            snippet = await upstream_client.read_error_snippet(resp)
            return _error_response(snippet or f"Upstream error {resp.status_code}")
        payload = resp.json()
    finally:
        with contextlib.suppress(Exception):
            await client.aclose()

    if not isinstance(payload, dict):
        return _error_response("Upstream returned a non-object JSON body")

    request_log(req_id).info("Whole response choices=%d", len(payload.get("choices") or []))
    return JSONResponse(reshape_completion(payload, body.get("model"), config.show_reasoning))


@app.post("/v1/chat/completions")
async def v1_chat_completions(request: Request) -> Response:
    """Handle chat completion requests."""
    await _check_request_size(request)

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body: expected object")

    client_ip = request.client.host if request.client else "unknown"
    req_id = (
        (request.headers.get("x-request-id") or "").strip()
        or uuid.uuid4().hex
    )
    stream = bool(body.get("stream", False))
    rlog = request_log(req_id)

    rlog.info(
        "Incoming chat from=%s request_model=%r stream=%s",
        client_ip,
        body.get("model"),
        stream,
    )

    client = new_upstream_http_client(config)
    try:
        if stream:
            return await handle_streaming_request(client, body, req_id)
        return await handle_whole_request(client, body, req_id)
    except (httpx.HTTPError, ValueError) as e:
        rlog.warning("Chat request failed err=%r", e)
        with contextlib.suppress(Exception):
            await client.aclose()
        return _error_response(str(e) or type(e).__name__)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
