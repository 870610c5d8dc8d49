import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.admin import admin_router
from app.api.checkout import router as checkout_router
from app.api.orders import router as orders_router
from app.api.payments import router as payments_router
from app.api.wallet import router as wallet_router
from app.api.webhooks import router as webhooks_router
from app.core.config import settings
from app.core.database import database_ok, engine, init_db, session_factory
from app.core.rate_limit import limiter
from app.gateways import build_registry
from app.logging import setup_logging
from app.models import ErrorLog, SecurityLog
from app.services.errors import StorefrontError

setup_logging(level=settings.log_level)
log = logging.getLogger("storefront")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    # Raises GatewayConfigError on a half-configured key pair: the app does not start
    app.state.gateways = build_registry(settings, session_factory)
    log.info("payment methods enabled: %s", ", ".join(app.state.gateways.enabled()))
    yield


app = FastAPI(
    title="Storefront API",
    description="Checkout, payment gateways and reconciliation",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(
    request: Request,
    status_code: int,
    detail: str,
    code: str | None = None,
    extra: dict | None = None,
) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "code": code or "error", "status_code": status_code}
    if rid:
        body["request_id"] = rid
    if extra:
        body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(StorefrontError)
def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    if exc.status_code >= 500:
        log.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    extra = {"details": exc.details} if exc.details else None
    return _error_response(request, exc.status_code, exc.message, exc.code, extra)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    try:
        ip = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip() or (
            request.client.host if request.client else ""
        )
        with Session(engine) as db:
            db.add(SecurityLog(event="rate_limit", ip=ip or None, endpoint=request.url.path, detail="Rate limit exceeded"))
            db.commit()
    except Exception as e:
        log.warning("SecurityLog rate_limit write failed: %s", e)
    return _error_response(request, 429, "Too many requests. Please wait a minute.", "rate_limited")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


def _validation_error_message(exc: RequestValidationError) -> str:
    errs = exc.errors()
    if not errs:
        return "Invalid request."
    first = errs[0]
    loc = [str(p) for p in (first.get("loc") or []) if p != "body"]
    field = ".".join(loc)
    msg = first.get("msg") or "Invalid value"
    return f"{field}: {msg}" if field else msg


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.info("Request validation error (422): path=%s method=%s", request.url.path, request.method)
    return _error_response(
        request,
        422,
        _validation_error_message(exc),
        "request_validation",
        {"detail": [{"loc": list(e.get("loc") or []), "msg": e.get("msg")} for e in errs]},
    )


@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc)
    try:
        with Session(engine) as db:
            db.add(
                ErrorLog(
                    request_id=getattr(request.state, "request_id", None),
                    endpoint=request.url.path,
                    method=request.method,
                    error_message=str(exc)[:2000],
                    stack_trace=traceback.format_exc()[:10000],
                )
            )
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "Unexpected server error.", "internal_error")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(checkout_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(wallet_router)
app.include_router(webhooks_router)
app.include_router(admin_router)


@app.get("/health")
def health(request: Request):
    db_ok = database_ok()
    registry = getattr(request.app.state, "gateways", None)
    return {
        "status": "ok" if db_ok else "degraded",
        "database": "ok" if db_ok else "error",
        "gateways": registry.enabled() if registry else [],
        "environment": settings.environment,
    }
