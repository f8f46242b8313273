import logging
import time
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.config import settings
from app.core.diagnostics import run_startup_diagnostics
from app.core.errors import AppError, RateLimitError, user_message
from app.core.request_context import REQUEST_ID_HEADER, RequestIDMiddleware, RequestIdFilter
from app.modules.auth import routes as auth_routes
from app.modules.staff import routes as staff_routes
from app.modules.members import routes as members_routes
from app.modules.groups import routes as groups_routes
from app.modules.transactions import routes as transactions_routes
from app.modules.loans import routes as loans_routes
from app.modules.dashboard import routes as dashboard_routes
from app.modules.reconciliation import routes as reconciliation_routes
from app.modules.audit import routes as audit_routes
from app.modules.sms import routes as sms_routes
from app.modules.messaging import routes as messaging_routes
from app.modules.reports import routes as reports_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.state.diagnostics = None
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    content = {"detail": user_message(exc), "code": exc.code, "retryable": exc.retryable}
    if exc.details and exc.status_code < 500:
        content["details"] = exc.details
    headers = dict(exc.headers) if isinstance(exc, RateLimitError) else {}
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers.setdefault("Retry-After", str(exc.retry_after))
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        headers[REQUEST_ID_HEADER] = request_id
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


class SecurityHeadersMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend([
                    (b"X-Content-Type-Options", b"nosniff"),
                    (b"X-Frame-Options", b"DENY"),
                    (b"Referrer-Policy", b"strict-origin-when-cross-origin"),
                ])
            await send(message)

        await self.app(scope, receive, send_with_headers)


app.add_middleware(SlowAPIMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER, "Retry-After", "X-RateLimit-Limit",
                    "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)

# Include module routes
app.include_router(auth_routes.router, prefix="/api/v1")
app.include_router(staff_routes.router, prefix="/api/v1")
app.include_router(members_routes.router, prefix="/api/v1")
app.include_router(groups_routes.router, prefix="/api/v1")
app.include_router(transactions_routes.router, prefix="/api/v1")
app.include_router(loans_routes.router, prefix="/api/v1")
app.include_router(dashboard_routes.router, prefix="/api/v1")
app.include_router(reconciliation_routes.router, prefix="/api/v1")
app.include_router(audit_routes.router, prefix="/api/v1")
app.include_router(sms_routes.router, prefix="/api/v1")
app.include_router(messaging_routes.router, prefix="/api/v1")
app.include_router(reports_routes.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info(f"Application startup ({settings.environment})")
    app.state.diagnostics = await run_in_threadpool(run_startup_diagnostics)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Application shutdown")


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.app_name}", "status": "healthy"}


def _health_status(report: dict) -> str:
    if not report["ok"]:
        return "unhealthy"
    optional = [name for name, check in report["checks"].items() if name != "database" and not check["ok"]]
    return "degraded" if optional else "healthy"


@app.get("/health")
@limiter.exempt
def health(request: Request):
    start = time.perf_counter()
    report = run_startup_diagnostics()
    status = _health_status(report)
    body = {
        "status": status,
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": report["checks"],
        "response_time_ms": round((time.perf_counter() - start) * 1000, 1),
    }
    return JSONResponse(status_code=503 if status == "unhealthy" else 200, content=body)


@app.get("/ready")
@limiter.exempt
def ready(request: Request):
    """Readiness check backed by the startup diagnostics report."""
    report = app.state.diagnostics or run_startup_diagnostics()
    return JSONResponse(status_code=200 if report["ok"] else 503, content=report)
