import logging
import time
import json
import asyncio
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config import get_settings

try:
    from api.routes import router
except Exception as _import_err:
    import logging as _log
    _log.critical(f"FATAL: could not import api.routes: {_import_err}", exc_info=True)
    raise

from api.connections import get_connection_registry
from gateway import Gateway, get_gateway

# ─── Logging ──────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if get_settings().DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)
settings = get_settings()


# ─── Request logging middleware ───────────────────────────────────────────────
class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed = (time.monotonic() - start) * 1000
        if request.url.path not in ("/health", "/favicon.ico"):
            logger.info(json.dumps({
                "method": request.method,
                "path":   request.url.path,
                "status": response.status_code,
                "ms":     round(elapsed, 1),
                "client": request.client.host if request.client else "unknown",
            }))
        return response


# ─── Lifespan ─────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(json.dumps({
        "event":         "startup",
        "app":           settings.APP_NAME,
        "version":       settings.APP_VERSION,
        "env":           settings.APP_ENV,
        "auth_required": settings.AUTH_REQUIRED,
    }))

    gateway = get_gateway()
    connections = get_connection_registry()

    stop_event = asyncio.Event()
    tasks = [
        asyncio.create_task(connections.heartbeat_loop(settings.SSE_HEARTBEAT_SECONDS, stop_event)),
        asyncio.create_task(gateway.sessions.reaper_loop(settings.AUTH_REAPER_INTERVAL_SECONDS, stop_event)),
    ]

    yield

    stop_event.set()
    for task in tasks:
        if task.done():
            continue
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            task.cancel()

    logger.info(json.dumps({"event": "shutdown", "app": settings.APP_NAME}))


# ─── App ──────────────────────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    description="MCP JSON-RPC gateway — auth-gated tools, SSE and chunked streaming",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["WWW-Authenticate", "Mcp-Session-Id"],
)
app.add_middleware(RequestLogMiddleware)


# ─── Global error handler ─────────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error":   "internal_server_error",
            "message": str(exc) if settings.DEBUG else "An unexpected error occurred",
            "path":    str(request.url.path),
        },
    )


# ─── Root ─────────────────────────────────────────────────────────────────────
@app.get("/", tags=["system"])
async def root():
    return {
        "name":    settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status":  "running",
        "mcp":     "/mcp",
        "docs":    "/docs",
        "health":  "/health",
    }


# ─── Health check ─────────────────────────────────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check(gateway: Gateway = Depends(get_gateway)):
    checks: dict = {
        "api":             True,
        "tools":           len(gateway.tools.tool_names),
        "auth_required":   gateway.gate.enabled,
        "oauth_client":    bool(settings.OAUTH_CLIENT_ID),
        "device_sessions": gateway.sessions.session_count,
    }
    return {
        "status":          "healthy",
        "app":             settings.APP_NAME,
        "version":         settings.APP_VERSION,
        "env":             settings.APP_ENV,
        "checks":          checks,
        "sse_connections": get_connection_registry().connection_count,
    }


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
