import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from audit import log_auth_event, log_security_event
from config import get_settings
from database import SessionLocal
from errors import InternalError, TrackItError, UnauthorizedError
from periods import resolve_period
from presenters import (
    category_usage_payload,
    page_payload,
    stats_payload,
    transaction_payload,
    user_payload,
)
from rate_limit import InMemoryCounterStore, RateLimiter
from schemas import (
    BulkDeleteIn,
    ChangePasswordIn,
    ForgotPasswordIn,
    LoginIn,
    ProfileUpdateIn,
    RefreshTokenIn,
    RegisterIn,
    ResetPasswordIn,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)
from services import (
    AuthService,
    LoggingResetNotifier,
    MetricsService,
    PasswordResetNotifier,
    TransactionService,
)
from tokens import ACCESS, verify_token

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="TrackIt API", version=APP_VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

counter_store = InMemoryCounterStore()
auth_limiter = RateLimiter(
    "auth",
    settings.auth_rate_limit,
    settings.rate_limit_window_secs,
    counter_store,
    "Too many authentication attempts, please try again later.",
)
transaction_limiter = RateLimiter(
    "transactions",
    settings.transaction_rate_limit,
    settings.rate_limit_window_secs,
    counter_store,
    "Too many transaction requests, please try again later.",
)
api_limiter = RateLimiter(
    "api",
    settings.api_rate_limit,
    settings.rate_limit_window_secs,
    counter_store,
    "Too many requests from this IP, please try again later.",
)


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def rate_limited(limiter: RateLimiter) -> Callable[[Request], None]:
    def dependency(request: Request) -> None:
        limiter.check(client_ip(request))

    return dependency


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_reset_notifier() -> PasswordResetNotifier:
    return LoggingResetNotifier()


def get_current_user_id(
    request: Request, authorization: Optional[str] = Header(None)
) -> int:
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("No token, authorization denied")
    token = authorization.split(" ", 1)[1].strip()
    try:
        user_id = verify_token(token, ACCESS)
    except UnauthorizedError as exc:
        logger.info(f"token_rejected: path={request.url.path} reason={exc.message}")
        raise UnauthorizedError("Token is not valid") from exc
    request.state.user_id = user_id
    return user_id


def user_rate_limited(limiter: RateLimiter) -> Callable[..., None]:
    """Like ``rate_limited``, but only counts requests that authenticated."""

    def dependency(
        request: Request, user_id: int = Depends(get_current_user_id)
    ) -> None:
        limiter.check(client_ip(request))

    return dependency


def _error_list(errors: list[dict], skip_source: bool) -> list[dict[str, str]]:
    items = []
    for err in errors:
        loc = list(err.get("loc", ()))
        if skip_source and loc and loc[0] in ("body", "query", "path", "header"):
            loc = loc[1:]
        items.append(
            {"field": ".".join(str(part) for part in loc), "message": err["msg"]}
        )
    return items


@app.exception_handler(TrackItError)
async def trackit_error_handler(request: Request, exc: TrackItError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation failed",
            "errors": _error_list(exc.errors(), skip_source=True),
        },
    )


@app.exception_handler(PydanticValidationError)
async def pydantic_validation_handler(
    request: Request, exc: PydanticValidationError
):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation failed",
            "errors": _error_list(exc.errors(), skip_source=False),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = "Route not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code, content={"success": False, "message": message}
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            f"unhandled_error: method={request.method} path={request.url.path} "
            f"user_id={getattr(request.state, 'user_id', 'unauthenticated')}"
        )
        error = InternalError()
        response = JSONResponse(
            status_code=error.status_code, content=error.to_payload()
        )
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        f"request: method={request.method} path={request.url.path} "
        f"status={response.status_code} duration_ms={duration_ms:.1f} "
        f"ip={client_ip(request)} "
        f"user_id={getattr(request.state, 'user_id', 'unauthenticated')}"
    )
    return response


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
}


# registered last so it wraps log_requests and also covers its 500s
@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.on_event("startup")
def startup_event():
    logger.info(
        f"startup: version={APP_VERSION} environment={settings.environment} "
        f"port={settings.port}"
    )


@app.get("/health")
def health():
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "environment": settings.environment,
    }


@app.get("/")
def root():
    return {
        "message": "TrackIt API is running...",
        "version": APP_VERSION,
        "endpoints": {
            "auth": "/api/auth",
            "transactions": "/api/transactions",
            "health": "/health",
        },
    }


# --- auth ---------------------------------------------------------------


@app.post(
    "/api/auth/register",
    status_code=201,
    dependencies=[Depends(rate_limited(auth_limiter))],
)
def register(data: RegisterIn, request: Request, db: Session = Depends(get_db)):
    try:
        user, tokens = AuthService(db).register(data)
    except TrackItError:
        log_auth_event("register", None, client_ip(request), False)
        raise
    log_auth_event("register", user.id, client_ip(request), True)
    return {
        "success": True,
        "message": "User registered successfully",
        "token": tokens.token,
        "refreshToken": tokens.refresh_token,
        "user": user_payload(user),
    }


@app.post("/api/auth/login", dependencies=[Depends(rate_limited(auth_limiter))])
def login(data: LoginIn, request: Request, db: Session = Depends(get_db)):
    try:
        user, tokens = AuthService(db).login(data)
    except TrackItError:
        log_auth_event("login", None, client_ip(request), False)
        raise
    log_auth_event("login", user.id, client_ip(request), True)
    return {
        "success": True,
        "message": "Login successful",
        "token": tokens.token,
        "refreshToken": tokens.refresh_token,
        "user": user_payload(user),
    }


@app.post(
    "/api/auth/refresh-token", dependencies=[Depends(rate_limited(auth_limiter))]
)
def refresh_token(
    data: RefreshTokenIn, request: Request, db: Session = Depends(get_db)
):
    try:
        tokens = AuthService(db).refresh(data.refresh_token)
    except TrackItError:
        log_auth_event("refresh", None, client_ip(request), False)
        raise
    return {
        "success": True,
        "token": tokens.token,
        "refreshToken": tokens.refresh_token,
    }


@app.post(
    "/api/auth/forgot-password", dependencies=[Depends(rate_limited(auth_limiter))]
)
def forgot_password(
    data: ForgotPasswordIn,
    db: Session = Depends(get_db),
    notifier: PasswordResetNotifier = Depends(get_reset_notifier),
):
    message = AuthService(db, notifier).forgot_password(data.email)
    return {"success": True, "message": message}


@app.post(
    "/api/auth/reset-password", dependencies=[Depends(rate_limited(auth_limiter))]
)
def reset_password(
    data: ResetPasswordIn, request: Request, db: Session = Depends(get_db)
):
    user = AuthService(db).reset_password(data)
    log_security_event("password_reset", user_id=user.id, ip=client_ip(request))
    return {"success": True, "message": "Password reset successfully"}


@app.post("/api/auth/logout")
def logout(request: Request, user_id: int = Depends(get_current_user_id)):
    log_auth_event("logout", user_id, client_ip(request), True)
    return {"success": True, "message": "Logged out successfully"}


@app.get("/api/auth/profile")
def get_profile(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    user = AuthService(db).get_profile(user_id)
    return {"success": True, "user": user_payload(user)}


@app.put("/api/auth/profile")
def update_profile(
    data: ProfileUpdateIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    user = AuthService(db).update_profile(user_id, data)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "user": user_payload(user),
    }


@app.put("/api/auth/change-password")
def change_password(
    data: ChangePasswordIn,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    AuthService(db).change_password(user_id, data)
    log_security_event("password_change", user_id=user_id, ip=client_ip(request))
    return {"success": True, "message": "Password changed successfully"}


# --- transactions -------------------------------------------------------


@app.post(
    "/api/transactions",
    status_code=201,
    dependencies=[Depends(user_rate_limited(transaction_limiter))],
)
def create_transaction(
    data: TransactionIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, user_id).create(data)
    return {
        "success": True,
        "message": "Transaction created successfully",
        "transaction": transaction_payload(txn),
    }


@app.get(
    "/api/transactions", dependencies=[Depends(user_rate_limited(api_limiter))]
)
def list_transactions(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    query = TransactionQuery.model_validate(dict(request.query_params))
    page = TransactionService(db, user_id).list(query)
    return {"success": True, **page_payload(page)}


@app.get(
    "/api/transactions/stats",
    dependencies=[Depends(user_rate_limited(api_limiter))],
)
def transaction_stats(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    period = resolve_period(request.query_params.get("period"))
    stats = MetricsService(db, user_id).stats(period)
    return {"success": True, **stats_payload(stats)}


@app.get(
    "/api/transactions/categories",
    dependencies=[Depends(user_rate_limited(api_limiter))],
)
def transaction_categories(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    rows = TransactionService(db, user_id).categories()
    return {"success": True, "categories": category_usage_payload(rows)}


@app.delete(
    "/api/transactions/bulk",
    dependencies=[Depends(user_rate_limited(api_limiter))],
)
def bulk_delete_transactions(
    data: BulkDeleteIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    deleted = TransactionService(db, user_id).bulk_delete(data.transaction_ids)
    return {
        "success": True,
        "message": f"{deleted} transactions deleted successfully",
        "deletedCount": deleted,
    }


@app.get(
    "/api/transactions/{transaction_id}",
    dependencies=[Depends(user_rate_limited(api_limiter))],
)
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, user_id).get(transaction_id)
    return {"success": True, "transaction": transaction_payload(txn)}


@app.put(
    "/api/transactions/{transaction_id}",
    dependencies=[Depends(user_rate_limited(api_limiter))],
)
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, user_id).update(transaction_id, data)
    return {
        "success": True,
        "message": "Transaction updated successfully",
        "transaction": transaction_payload(txn),
    }


@app.delete(
    "/api/transactions/{transaction_id}",
    dependencies=[Depends(user_rate_limited(api_limiter))],
)
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    TransactionService(db, user_id).delete(transaction_id)
    return {"success": True, "message": "Transaction deleted successfully"}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, reload=False)


if __name__ == "__main__":
    main()
