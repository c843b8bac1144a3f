from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.accounting import router as accounting_router
from app.api.auth import router as auth_router
from app.api.exchange_rates import router as exchange_rates_router
from app.api.exports import router as exports_router
from app.api.invoice_numbering import router as invoice_numbering_router
from app.api.invoices import router as invoices_router
from app.api.notifications import router as notifications_router
from app.core.auth import parse_session_token
from app.core.config import settings
from app.core.errors import AccountingError
from app.db.base import Base
from app.db.seed import seed_admin_user_if_missing
from app.db.session import SessionLocal, engine
import app.models  # noqa: F401 - register models with Base.metadata

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s %(message)s",
)
request_logger = logging.getLogger("app.request")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create DB tables
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_admin_user_if_missing(db)
    finally:
        db.close()
    yield


app = FastAPI(
    title="YourOBC Accounting API",
    description="Invoice numbering, multi-currency invoicing and the accounting dashboard",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.app_cors_origins.split(",") if settings.app_cors_origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

PUBLIC_PATHS = {
    "/auth/login",
    "/auth/logout",
    "/health",
}

PROTECTED_API_PREFIXES = (
    "/accounting",
    "/exchange-rates",
    "/exports",
    "/invoice-numbering",
    "/invoices",
    "/notifications",
    "/auth/me",
)


@app.exception_handler(AccountingError)
async def accounting_error_handler(request: Request, exc: AccountingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.middleware("http")
async def request_logging_middleware(request, call_next):
    req_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        request_logger.exception(
            "request_failed id=%s method=%s path=%s ms=%s",
            req_id,
            request.method,
            request.url.path,
            elapsed_ms,
        )
        raise
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    response.headers["x-request-id"] = req_id
    request_logger.info(
        "request_done id=%s method=%s path=%s status=%s ms=%s",
        req_id,
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    path = request.url.path
    # framework internals
    if path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc") or path == "/openapi.json":
        request.state.user = None
        return await call_next(request)

    user = parse_session_token(request.cookies.get(settings.auth_cookie_name))
    request.state.user = user

    if path.startswith(PROTECTED_API_PREFIXES) and not user:
        return JSONResponse(status_code=401, content={"detail": "Authentication required"})
    return await call_next(request)


app.include_router(accounting_router)
app.include_router(auth_router)
app.include_router(exchange_rates_router)
app.include_router(exports_router)
app.include_router(invoice_numbering_router)
app.include_router(invoices_router)
app.include_router(notifications_router)


@app.get("/health", include_in_schema=False)
def health() -> dict:
    return {"ok": True}
