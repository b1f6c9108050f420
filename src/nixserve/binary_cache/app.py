"""HTTP binary cache serving a Nix store over the narinfo/NAR protocol."""

from __future__ import annotations

import asyncio
import time
from typing import Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from opentelemetry import trace

from ..common.http_security import require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Counter, Histogram
from ..common.observability import instrument_fastapi_app, setup_observability
from ..common.settings import BinaryCacheSettings
from ..store.base import DrvOutput, PathInfo, Store
from ..store.hashing import Hash, InvalidHash
from ..store.local import LocalStore
from .errors import INCORRECT_NAR_HASH, NO_SUCH_DRV_OUTPUT, NO_SUCH_PATH, internal_error, not_found
from .narinfo import render_cache_info, render_narinfo
from .routes import Operation, RouteDispatcher, RouteMatch
from .signing import Signer, load_secret_key
from .streaming import NarStream, NarStreamingResponse


SERVICE_NAME = "nixserve.binary_cache"
LOGGER = structlog.get_logger(SERVICE_NAME)
TRACER = trace.get_tracer(SERVICE_NAME)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

REQUEST_COUNTER = GLOBAL_REGISTRY.register(
    Counter("nixserve_requests_total", "Total binary cache HTTP requests")
)
NARINFO_HIT_COUNTER = GLOBAL_REGISTRY.register(
    Counter("nixserve_narinfo_hits_total", "narinfo requests answered from the store")
)
NARINFO_MISS_COUNTER = GLOBAL_REGISTRY.register(
    Counter("nixserve_narinfo_misses_total", "narinfo requests for unknown hash parts")
)
INTERNAL_ERROR_COUNTER = GLOBAL_REGISTRY.register(
    Counter("nixserve_internal_errors_total", "Requests answered with a 500")
)
REQUEST_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "nixserve_request_latency_seconds",
        buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
        description="Time until response headers are ready",
    )
)


class BinaryCacheState:
    """Process-wide handles shared by every request; none of them is mutated per request."""

    def __init__(
        self,
        settings: BinaryCacheSettings,
        store: Store,
        signer: Signer,
        dispatcher: Optional[RouteDispatcher] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.signer = signer
        self.dispatcher = dispatcher or RouteDispatcher()
        self.logger = LOGGER.bind()

    async def resolve(self, hash_part: str) -> Optional[PathInfo]:
        """Look up the path a hash part currently names; ``None`` when there is none."""
        store_path = await asyncio.to_thread(self.store.query_path_from_hash_part, hash_part)
        if store_path is None:
            return None
        return await asyncio.to_thread(self.store.query_path_info, store_path)

    async def handle(self, method: str, path: str) -> Response:
        match = self.dispatcher.match(method, path)
        if match is None:
            self.logger.debug("route_not_found", method=method, path=path)
            return not_found()
        return await self.run(match)

    async def run(self, match: RouteMatch) -> Response:
        operation = match.operation
        with TRACER.start_as_current_span(f"binary_cache.{operation.value}") as span:
            span.set_attribute("nixserve.captures", list(match.captures))
            if operation is Operation.CACHE_INFO:
                return self.cache_info()
            if operation is Operation.NARINFO:
                return await self.narinfo(*match.captures)
            if operation is Operation.NAR:
                return await self.nar(*match.captures)
            if operation is Operation.NAR_DEPRECATED:
                return await self.nar_deprecated(*match.captures)
            if operation is Operation.REALISATION:
                return await self.realisation(*match.captures)
        raise RuntimeError(f"no handler for operation {operation!r}")

    def cache_info(self) -> Response:
        body = render_cache_info(self.store.store_dir, self.settings.priority)
        return PlainTextResponse(body)

    async def narinfo(self, hash_part: str) -> Response:
        info = await self.resolve(hash_part)
        if info is None:
            NARINFO_MISS_COUNTER.inc()
            self.logger.debug("narinfo_miss", hash_part=hash_part)
            return not_found(NO_SUCH_PATH)
        signature = self.signer.sign(info) if self.signer.enabled else None
        NARINFO_HIT_COUNTER.inc()
        return PlainTextResponse(render_narinfo(info, hash_part, signature))

    async def nar(self, hash_part: str, nar_hash: str) -> Response:
        try:
            expected = Hash.parse_any(nar_hash, "sha256")
        except InvalidHash:
            expected = None
        info = await self.resolve(hash_part)
        if info is None:
            return not_found(NO_SUCH_PATH)
        if expected is None or info.nar_hash != expected:
            self.logger.debug("nar_hash_mismatch", hash_part=hash_part, requested=nar_hash)
            return not_found(INCORRECT_NAR_HASH)
        return self._stream(info)

    async def nar_deprecated(self, hash_part: str) -> Response:
        # Old clients cannot name the hash, so there is nothing to verify against.
        info = await self.resolve(hash_part)
        if info is None:
            return not_found(NO_SUCH_PATH)
        return self._stream(info)

    def _stream(self, info: PathInfo) -> Response:
        stream = NarStream(self.store, info.path, self.settings.chunk_size)
        return NarStreamingResponse(stream)

    async def realisation(self, output_id: str) -> Response:
        drv_output = DrvOutput.parse(output_id)
        if drv_output is None:
            self.logger.debug("drv_output_unparseable", output_id=output_id)
            return not_found(NO_SUCH_DRV_OUTPUT)
        realisation = await asyncio.to_thread(self.store.query_realisation, drv_output)
        if realisation is None:
            return not_found(NO_SUCH_DRV_OUTPUT)
        return Response(content=realisation.dumps(), media_type="application/json")


def build_signer(settings: BinaryCacheSettings) -> Signer:
    if settings.secret_key_file is None:
        return Signer()
    return Signer(load_secret_key(settings.secret_key_file))


def get_state(request: Request) -> BinaryCacheState:
    return request.app.state.cache_state  # type: ignore[attr-defined]


def create_app(
    settings: Optional[BinaryCacheSettings] = None,
    store: Optional[Store] = None,
    signer: Optional[Signer] = None,
) -> FastAPI:
    settings = settings or BinaryCacheSettings()
    setup_observability(SERVICE_NAME, settings)

    if signer is None:
        signer = build_signer(settings)
    if store is None:
        store = LocalStore(settings.store_dir, settings.database_url)
    state = BinaryCacheState(settings, store, signer)

    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            state.store.close()

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    instrument_fastapi_app(app)
    app.state.cache_state = state

    @app.middleware("http")
    async def handle_request(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        REQUEST_COUNTER.inc()
        try:
            response = await call_next(request)
        except Exception as exc:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            INTERNAL_ERROR_COUNTER.inc()
            state.logger.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            return internal_error(exc)
        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            state.logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            state.logger.warning("http_request", **log_kwargs)
        else:
            state.logger.info("http_request", **log_kwargs)
        return response

    if settings.metrics_enabled:

        @app.get("/metrics", response_class=PlainTextResponse, include_in_schema=False)
        async def metrics_endpoint(request: Request) -> PlainTextResponse:
            token = settings.metrics_token.get_secret_value() if settings.metrics_token else None
            require_metrics_access(request, token)
            return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
    async def dispatch(request: Request) -> Response:
        return await get_state(request).handle(request.method, request.url.path)

    return app
