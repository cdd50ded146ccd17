import logging
import time
import traceback
import uuid
from typing import Optional

import sentry_sdk
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi import HTTPException as FastAPIHTTPException
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.responses import PlainTextResponse

from app.api import download, gallery, images, live, uploads
from app.core.dependencies import USER_HEADER
from app.core.errors import LiveDropError
from app.core.logging_utils import configure_logging
from app.core.settings import settings
from app.models import AppErrorLog
from app.services.archive_service import ArchiveBuilder
from app.services.change_feed import ChangeFeed
from app.services.download_service import DownloadOrchestrator
from app.services.live_session import LiveSessionRegistry
from app.services.s3_storage import LocalStorageService, build_object_store
from db import session_scope

load_dotenv()


app = FastAPI(title="LiveDrop")

# Configure logging (console + rotating file; JSON by default)
configure_logging(settings)
logger = logging.getLogger("app")

# Initialize Sentry if DSN provided
if getattr(settings, "SENTRY_DSN", ""):
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[StarletteIntegration()],
        traces_sample_rate=float(getattr(settings, "SENTRY_TRACES_SAMPLE_RATE", 0.0) or 0.0),
        send_default_pii=False,
    )

# Shared services live on app state for dependency injection in routes
object_store = build_object_store(settings)
archive_builder = ArchiveBuilder(
    object_store,
    max_workers=settings.ARCHIVE_FETCH_CONCURRENCY,
    fetch_timeout=settings.ARCHIVE_FETCH_TIMEOUT_SECONDS,
    default_label=settings.ARCHIVE_DEFAULT_LABEL,
)
app.state.object_store = object_store
app.state.change_feed = ChangeFeed()
app.state.live_sessions = LiveSessionRegistry()
app.state.download_orchestrator = DownloadOrchestrator(archive_builder)

# Local blobs are served directly; S3/R2 buckets serve their own public URL
if isinstance(object_store, LocalStorageService):
    app.mount("/storage", StaticFiles(directory=object_store.root), name="storage")

app.include_router(uploads.router)
app.include_router(live.router)
app.include_router(gallery.router)
app.include_router(download.router)
app.include_router(images.router)


@app.get("/healthz")
def healthz():
    return {"ok": True}


def _log_error_to_db(request: Request, status: int, message: str, stack: Optional[str] = None) -> None:
    """Best-effort AppErrorLog row; never masks the original error."""
    try:
        with session_scope() as db:
            request_id = getattr(request.state, "request_id", None)
            err = AppErrorLog(
                RequestID=str(request_id) if request_id else None,
                Path=str(request.url.path),
                Method=request.method,
                StatusCode=int(status),
                UserID=(request.headers.get(USER_HEADER) or None),
                ClientIP=request.client.host if request.client else None,
                UserAgent=request.headers.get("user-agent"),
                Message=message,
                StackTrace=stack,
            )
            db.add(err)
            db.commit()
    except Exception:
        logger.warning("error_log.write_failed", extra={"path": str(request.url.path)})


def _with_request_id(request: Request, resp):
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        resp.headers["X-Request-ID"] = str(request_id)
    return resp


# Request logging middleware with request id and user context
@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start = time.perf_counter()
    # Ensure duration_ms is always defined to avoid UnboundLocalError in exception paths
    duration_ms: Optional[int] = None
    request.state.request_id = request_id

    extra_ctx = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else None,
        "user_id": request.headers.get(USER_HEADER),
        "user_agent": request.headers.get("user-agent"),
    }
    logger.info("request.start", extra=extra_ctx)
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.exception("request.error", extra={**extra_ctx, "duration_ms": duration_ms})
        # Re-raise to be handled by 500 handler
        raise

    duration_ms = int((time.perf_counter() - start) * 1000)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request.end",
        extra={**extra_ctx, "status_code": response.status_code, "duration_ms": duration_ms},
    )
    return response


@app.exception_handler(LiveDropError)
async def domain_error_handler(request: Request, exc: LiveDropError):
    status = int(getattr(exc, "status_code", 500) or 500)
    if status >= 500:
        logger.error(
            "request.domain_error",
            extra={"path": str(request.url.path), "code": exc.code, "error": exc.message},
        )
        _log_error_to_db(request, status, exc.message)
    resp = JSONResponse({"ok": False, "error": exc.code, "detail": exc.message}, status_code=status)
    return _with_request_id(request, resp)


@app.exception_handler(FastAPIHTTPException)
async def http_exception_handler(request: Request, exc: FastAPIHTTPException):
    """Log HTTPException (>=400, except 404) to DB, then mirror FastAPI's JSON body."""
    status = getattr(exc, "status_code", 500) or 500
    if status >= 400 and status != 404:
        _log_error_to_db(request, status, str(getattr(exc, "detail", "HTTP error")))
    resp = JSONResponse({"detail": exc.detail}, status_code=status, headers=getattr(exc, "headers", None))
    return _with_request_id(request, resp)


@app.exception_handler(500)
async def server_error_handler(request: Request, exc):
    _log_error_to_db(
        request,
        500,
        str(exc),
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )
    try:
        resp = JSONResponse({"ok": False, "error": "internal_error"}, status_code=500)
        return _with_request_id(request, resp)
    except Exception:
        return PlainTextResponse("Internal Server Error", status_code=500)
