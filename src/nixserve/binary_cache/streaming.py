"""Chunked delivery of NAR bytes from a store adapter to the client."""

from __future__ import annotations

from typing import AsyncIterator, Iterator

import anyio
import structlog
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from ..common.metrics import GLOBAL_REGISTRY, Counter, Gauge
from ..store.base import Store, StoreError


LOGGER = structlog.get_logger("nixserve.binary_cache.streaming")

NAR_BYTES_COUNTER = GLOBAL_REGISTRY.register(
    Counter("nixserve_nar_bytes_served_total", "Total NAR bytes written to clients")
)
NAR_STREAM_FAILURES_COUNTER = GLOBAL_REGISTRY.register(
    Counter("nixserve_nar_stream_failures_total", "NAR streams ended early by a serialization error")
)
NAR_STREAM_ABORTS_COUNTER = GLOBAL_REGISTRY.register(
    Counter("nixserve_nar_stream_aborts_total", "NAR streams abandoned by the client")
)
ACTIVE_NAR_STREAMS_GAUGE = GLOBAL_REGISTRY.register(
    Gauge("nixserve_nar_streams_active", "NAR streams currently open")
)


def _next_chunk(chunks: Iterator[bytes]) -> bytes | None:
    return next(chunks, None)


class NarStream:
    """Pulls one chunk at a time from the store, off the event loop.

    Nothing is read ahead: the next chunk is only requested after the
    previous one has been handed to the transport, so a slow client
    throttles the serializer. The store iterator is closed as soon as the
    stream ends for any reason.
    """

    def __init__(self, store: Store, path: str, chunk_size: int) -> None:
        self.path = path
        self.bytes_sent = 0
        self._chunks = store.nar_chunks(path, chunk_size)
        self._finished = False
        self._closed = False
        ACTIVE_NAR_STREAMS_GAUGE.inc()

    async def chunks(self) -> AsyncIterator[bytes]:
        try:
            while True:
                try:
                    # anyio rather than asyncio.to_thread: a cancelled await still waits for next() to
                    # return, so close() never runs while the worker is inside the generator.
                    chunk = await anyio.to_thread.run_sync(_next_chunk, self._chunks)
                except StoreError as exc:
                    self._fail(exc)
                    return
                except Exception as exc:  # noqa: BLE001 - status line is already committed
                    self._fail(exc, unexpected=True)
                    return
                if chunk is None:
                    self._finished = True
                    return
                if not chunk:
                    continue
                self.bytes_sent += len(chunk)
                NAR_BYTES_COUNTER.inc(len(chunk))
                yield chunk
        finally:
            self.close()

    def _fail(self, exc: Exception, unexpected: bool = False) -> None:
        self._finished = True
        NAR_STREAM_FAILURES_COUNTER.inc()
        LOGGER.error(
            "nar_stream_failed",
            path=self.path,
            bytes_sent=self.bytes_sent,
            error=str(exc),
            exc_info=unexpected,
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        ACTIVE_NAR_STREAMS_GAUGE.dec()
        close = getattr(self._chunks, "close", None)
        if close is not None:
            close()
        if not self._finished:
            NAR_STREAM_ABORTS_COUNTER.inc()
            LOGGER.info("nar_stream_aborted", path=self.path, bytes_sent=self.bytes_sent)


class NarStreamingResponse(StreamingResponse):
    """Chunked ``text/plain`` response that always releases its NAR stream."""

    def __init__(self, stream: NarStream) -> None:
        self._stream = stream
        self._body = stream.chunks()
        super().__init__(self._body, media_type="text/plain")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self._body.aclose()
            self._stream.close()
