import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from linkshortener.api.deps import (
    get_client_ip,
    get_link_store,
    get_redirector,
    get_request_meta,
    redirect_rate_limiter,
)
from linkshortener.api.routes import router as api_router
from linkshortener.core.config import settings
from linkshortener.core.errors import (
    ApiError,
    LinkShortenerError,
    error_body,
    normalize_domain_error,
    normalize_http_exception,
)
from linkshortener.core.logging import configure_logging
from linkshortener.db.session import Database, database, get_database
from linkshortener.services.link_store import LinkStore
from linkshortener.services.redirector import RedirectOutcome, Redirector, RequestMeta

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.init()
    yield
    database.dispose()


app = FastAPI(
    title="Link Shortener",
    lifespan=lifespan,
    # single-segment paths belong to short keys
    docs_url="/api/docs",
    redoc_url=None,
    openapi_url="/api/openapi.json",
)
app.include_router(api_router)


@app.middleware("http")
async def log_api_requests(request: Request, call_next):
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("%s %s failed", request.method, request.url.path)
        raise

    status = response.status_code
    if status >= 500:
        level = logging.ERROR
    elif status >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(
        level,
        "%s %s %d %.1fms ip=%s ua=%s",
        request.method,
        request.url.path,
        status,
        (time.perf_counter() - started) * 1000,
        get_client_ip(request),
        request.headers.get("user-agent"),
    )
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    err = normalize_http_exception(exc)
    return JSONResponse(status_code=exc.status_code, content=error_body(err), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{loc}: {first.get('msg', 'invalid value')}" if loc else "Invalid request"
    return JSONResponse(status_code=422, content=error_body(ApiError("VALIDATION_ERROR", message)))


@app.exception_handler(LinkShortenerError)
async def domain_exception_handler(request: Request, exc: LinkShortenerError):
    status, err = normalize_domain_error(exc)
    if status >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=error_body(err))


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/ready")
def ready(db: Database = Depends(get_database)):
    if not db.is_ready():
        raise HTTPException(status_code=503, detail="Database not ready")
    return {"status": "ready"}


@app.head("/{short_key}")
def resolve_link(short_key: str, store: LinkStore = Depends(get_link_store)):
    # no counting or tracking for HEAD
    link = store.find_by_key(short_key)
    return RedirectResponse(url=link.target_url, status_code=302)


@app.get("/{short_key}", dependencies=[Depends(redirect_rate_limiter)])
def follow_link(
    short_key: str,
    meta: RequestMeta = Depends(get_request_meta),
    redirector: Redirector = Depends(get_redirector),
):
    result = redirector.redirect(short_key, meta)

    if result.outcome is RedirectOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Link not found")
    if result.outcome is RedirectOutcome.SERVER_ERROR:
        raise HTTPException(status_code=500, detail="Internal server error")

    return RedirectResponse(url=result.target_url, status_code=302)
