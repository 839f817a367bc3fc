"""Server-Sent Events (SSE) relay between the NIM upstream and the client."""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncGenerator, Callable, Iterable, Optional

import httpx

from logger import request_log
from transcoder import StreamTranscoder

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class TranscodingRelay:
    """Callback-style binding of one transcoder to one downstream sink.

    The transport calls on_data() per chunk, then exactly one of on_end() or
    on_error(). Frames are written to the sink as soon as they are produced.
    After disconnect() (or a failing sink) nothing more is written.
    """

    def __init__(
        self,
        transcoder: StreamTranscoder,
        sink: Callable[[bytes], None],
        close: Optional[Callable[[], None]] = None,
        req_id: str = "-",
    ) -> None:
        self._transcoder = transcoder
        self._sink = sink
        self._close = close
        self._log = request_log(req_id)
        self._detached = False
        self._closed = False

    @property
    def detached(self) -> bool:
        return self._detached

    def disconnect(self) -> None:
        """Downstream went away; stop writing. Upstream cancellation is the caller's job."""
        self._detached = True

    def on_data(self, chunk: bytes) -> None:
        self._write(self._transcoder.feed(chunk))

    def on_end(self) -> None:
        self._write(self._transcoder.finish())
        self._finalize()

    def on_error(self, err: BaseException) -> None:
        self._log.warning("Upstream stream error err=%r", err)
        self._write(self._transcoder.finish())
        self._finalize()

    def _write(self, frames: Iterable[bytes]) -> None:
        for frame in frames:
            if self._detached:
                return
            try:
                self._sink(frame)
            except Exception as e:
                self._log.info("Downstream sink failed err=%r; detaching", e)
                self._detached = True
                return

    def _finalize(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._close is not None and not self._detached:
            self._close()


class SSEStreamer:
    """Stream transcoded SSE frames from an upstream response."""

    @staticmethod
    async def transcode_stream(
        client: httpx.AsyncClient,
        resp: httpx.Response,
        transcoder: StreamTranscoder,
        req_id: str,
        model_id: str,
    ) -> AsyncGenerator[bytes, None]:
        """
        Relay upstream bytes through the transcoder, one frame per yield.

        Upstream errors end the stream quietly without a synthetic [DONE].
        Client disconnects cancel the generator; upstream is closed either way.
        """
        rlog = request_log(req_id)
        errored = False
        try:
            try:
                async for chunk in resp.aiter_bytes():
                    for frame in transcoder.feed(chunk):
                        yield frame
            except httpx.HTTPError as e:
                errored = True
                rlog.warning(
                    "Upstream SSE ended with error model=%s err=%r",
                    model_id,
                    e,
                )

            for frame in transcoder.finish():
                yield frame

            rlog.info(
                "Stream finished model=%s events_in=%d events_out=%d dropped=%d errored=%s",
                model_id,
                transcoder.events_in,
                transcoder.events_out,
                transcoder.events_dropped,
                errored,
            )
        except (asyncio.CancelledError, GeneratorExit):
            rlog.info("Client disconnected model=%s", model_id)
            raise
        finally:
            with contextlib.suppress(Exception):
                await resp.aclose()
            with contextlib.suppress(Exception):
                await client.aclose()
