from contextlib import asynccontextmanager
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from farm2table.db.repo import init_db
from farm2table.routers import catalog, conversations, market, metrics, pricing, recommend, search
from farm2table.utils import slog
from farm2table.utils.errors import NotFound, ValidationError
from farm2table.utils.logging import configure_logging
from farm2table.utils.metrics import record_endpoint, record_request


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    init_db()
    logger.info("[startup] database ready")
    yield


app = FastAPI(
    title="Farm2Table AI",
    description="Semantic produce search, contextual recommendations and pricing assistance.",
    lifespan=lifespan,
)


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": exc.message, "field": exc.field})


@app.exception_handler(NotFound)
async def _not_found(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.middleware("http")
async def _logging_middleware(request, call_next):
    start = time.perf_counter()
    req_id = slog.new_request_id()
    client_ip = request.client.host if request.client else None
    try:
        response = await call_next(request)
    except Exception as e:
        latency_ms = int((time.perf_counter() - start) * 1000)
        ctx = getattr(request.state, "log_context", {})
        slog.log_event(
            "request.error",
            request_id=req_id,
            path=str(request.url.path),
            method=request.method,
            latency_ms=latency_ms,
            client_ip=client_ip,
            error=str(e),
            **(ctx or {}),
        )
        raise
    latency_ms = int((time.perf_counter() - start) * 1000)
    ctx = getattr(request.state, "log_context", {}) or {}
    slog.finalize_request_log(
        request_id=req_id,
        method=request.method,
        path=str(request.url.path),
        status=response.status_code,
        latency_ms=latency_ms,
        client_ip=client_ip,
        ctx=ctx,
    )
    # --- metrics wiring ---
    record_request(latency_ms=latency_ms)
    record_endpoint(method=request.method, path=str(request.url.path), latency_ms=latency_ms)

    response.headers["X-Request-ID"] = req_id
    return response


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(search.router)
app.include_router(recommend.router)
app.include_router(pricing.router)
app.include_router(market.router)
app.include_router(catalog.router)
app.include_router(conversations.router)
app.include_router(metrics.router)
