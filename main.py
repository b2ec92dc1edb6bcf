"""
main.py
FastAPI application entry point.
Registers all routers, middleware, exception handlers and startup/shutdown events.

- Admin console API under /admin (firms, support tickets, users, auth)
- App-user support tickets under /support_tickets
- JSON:API documents for every payload, errors included
- Prometheus metrics at /metrics
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.database import close_db, init_db
from config.redis_client import RateLimiter, close_redis, init_redis
from config.settings import settings
from shared.exceptions import CascadeDiscardError
from shared.schemas.jsonapi import http_error_document
from shared.utils.geocoding import close_geocoder

# Service routers
from services.auth.router import router as auth_router
from services.firm.router import router as firm_router
from services.support_ticket.router import router as support_ticket_router
from services.ticket.router import router as ticket_router
from services.user.router import router as user_router


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


# Configure structured logging
handler = logging.StreamHandler()
handler.setFormatter(JSONFormatter())
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    handlers=[handler],
)
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info(f"Starting {settings.APP_NAME}...")

    # Initialize connections
    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    # Seed features and the bootstrap admin, only in dev
    if settings.APP_ENV == "development":
        await seed_initial_data()

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} is ready")
    yield

    # Cleanup
    close_geocoder()
    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Pin Platform API

Admin console and support API for the Pin Platform:
- **Firms**: search, create/update with geocoding, soft delete, pin balance ledger
- **Support tickets**: admin moderation + CSV export, and users' own tickets
- **Users**: admin moderation + CSV export

### Authentication
All protected endpoints require `Authorization: Bearer <access_token>` header.
Admins get a token from `POST /admin/auth/login`; app users get theirs from the
external auth provider.

### Roles
- `ADMIN`: the whole `/admin` namespace
- `USER`: their own support tickets
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (order matters — outermost first) ───────────────
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["*"]
    )
    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time", "Content-Disposition"],
    )

    # GZip compression
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Custom Middleware ──────────────────────────────────────────

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for distributed tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Per-IP limit for unauthenticated callers (login attempts mostly).
        Bearer requests are limited upstream by NGINX. Fails open if Redis is down.
        """
        skip_paths = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths or request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        from config.redis_client import redis_client
        if redis_client:
            client_ip = request.client.host if request.client else "unknown"
            try:
                limiter = RateLimiter(redis_client, settings.RATE_LIMIT_UNAUTH_PER_MINUTE)
                allowed = await limiter.hit(f"unauth:{client_ip}")
            except Exception as e:
                logger.error(f"Rate limit check failed: {str(e)}")
                allowed = True

            if not allowed:
                logger.warning(f"Rate limit exceeded for IP {client_ip}")
                return JSONResponse(
                    status_code=429,
                    content=http_error_document(429, "Rate limit exceeded. Please slow down."),
                    headers={"Retry-After": "60"},
                )

        return await call_next(request)

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=http_error_document(exc.status_code, exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed query/path parameters or a non-object body."""
        errors = []
        for err in exc.errors():
            loc = [str(part) for part in err.get("loc", ())]
            errors.append({
                "status": "422",
                "title": f"Invalid {loc[-1] if loc else 'request'}",
                "detail": err.get("msg", ""),
                "source": {"parameter" if loc and loc[0] in ("query", "path") else "pointer": ".".join(loc)},
            })
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"errors": errors})

    @app.exception_handler(CascadeDiscardError)
    async def cascade_discard_handler(request: Request, exc: CascadeDiscardError):
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] {exc}")
        return JSONResponse(status_code=500, content=http_error_document(500, str(exc)))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {str(exc)}", exc_info=True)

        detail = str(exc) if settings.DEBUG else "An internal server error occurred"
        content = http_error_document(500, detail)
        content["meta"] = {"request_id": request_id}
        return JSONResponse(status_code=500, content=content)

    # ── Routes ────────────────────────────────────────────────────

    # Health check (public)
    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from config.redis_client import redis_client
        from sqlalchemy import text
        from config.database import AsyncSessionLocal

        checks = {"status": "ok", "version": settings.APP_VERSION}

        # DB check
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"
            checks["status"] = "degraded"

        # Redis check
        try:
            if redis_client:
                await redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    # Register all service routers
    app.include_router(auth_router)
    app.include_router(firm_router)
    app.include_router(support_ticket_router)
    app.include_router(user_router)
    app.include_router(ticket_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Dev Data Seeder ───────────────────────────────────────────

DEFAULT_FEATURES = [
    ("Parking", "parking"),
    ("Wi-Fi", "wifi"),
    ("Wheelchair access", "accessible"),
    ("Outdoor seating", "deck"),
    ("Pet friendly", "pets"),
    ("Accepts cards", "credit-card"),
]


async def seed_initial_data():
    """Seed the feature catalogue and a bootstrap admin (development only)."""
    from config.database import get_db_context
    from shared.models.models import Admin, Feature
    from shared.utils.security import hash_password
    from sqlalchemy import select, func

    async with get_db_context() as db:
        count = await db.scalar(select(func.count(Feature.id)))
        if not count:
            for name, icon in DEFAULT_FEATURES:
                db.add(Feature(name=name, icon=icon))
            logger.info(f"Seeded {len(DEFAULT_FEATURES)} features")

        if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
            existing = await db.scalar(select(Admin.id).where(Admin.email == settings.ADMIN_EMAIL))
            if not existing:
                db.add(Admin(
                    email=settings.ADMIN_EMAIL,
                    username=settings.ADMIN_EMAIL.split("@")[0],
                    name="Administrator",
                    password_hash=hash_password(settings.ADMIN_PASSWORD),
                ))
                logger.info(f"Seeded admin {settings.ADMIN_EMAIL}")


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
