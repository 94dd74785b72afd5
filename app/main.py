import logging
import os
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import orders, payments
from app.config import settings
from app.db_init import init_db
from app.jobs.payment_reconciliation import PaymentReconciliationScheduler
from app.models import SessionLocal
from app.services.paymee_service import MODE_DYNAMIC, is_loopback_url
from app.webhooks import paymee_webhook

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("app.startup")


def _is_localhost(host: str | None) -> bool:
    return host in {"localhost", "127.0.0.1"}


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def _strip_wrapping_quotes(value: str) -> str:
    stripped = value.strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in {"'", '"'}:
        return stripped[1:-1].strip()
    return stripped


def _normalize_http_url_for_railway(value: str, is_railway: bool) -> tuple[str, bool]:
    cleaned = _strip_wrapping_quotes(value)
    if not is_railway:
        return cleaned, False
    if _is_http_url(cleaned):
        return cleaned, False

    candidate = urlparse(f"//{cleaned}")
    if candidate.hostname:
        return f"https://{cleaned}", True
    return cleaned, False


def _get_effective_cors_origins(cors_raw: str, is_railway: bool) -> tuple[list[str], list[str]]:
    origins = [origin.strip() for origin in cors_raw.split(",") if origin.strip()]
    normalized_origins: list[str] = []
    coerced_origins: list[str] = []

    for origin in origins:
        normalized, coerced = _normalize_http_url_for_railway(origin, is_railway)
        normalized_origins.append(normalized)
        if coerced:
            coerced_origins.append(origin)

    return normalized_origins, coerced_origins


def _is_railway_runtime() -> bool:
    return any(
        os.getenv(env_name)
        for env_name in (
            "RAILWAY_PROJECT_ID",
            "RAILWAY_SERVICE_ID",
            "RAILWAY_ENVIRONMENT",
            "RAILWAY_ENVIRONMENT_NAME",
            "RAILWAY_PUBLIC_DOMAIN",
        )
    )


def _validate_database_url_for_runtime(database_url: str) -> None:
    parsed = urlparse(database_url)
    scheme = parsed.scheme
    host = parsed.hostname
    port = parsed.port
    db_name = parsed.path.lstrip("/")
    postgres_schemes = {"postgres", "postgresql", "postgresql+psycopg"}

    if not scheme:
        raise RuntimeError("DATABASE_URL is missing URL scheme (expected postgresql:// or postgresql+psycopg://).")
    if scheme == "sqlite":
        return
    if scheme not in postgres_schemes:
        raise RuntimeError(
            f"DATABASE_URL has unsupported scheme '{scheme}' "
            "(expected postgresql:// or postgresql+psycopg://)."
        )
    if not host:
        raise RuntimeError("DATABASE_URL is missing host.")
    if not db_name:
        raise RuntimeError("DATABASE_URL is missing database name in path.")
    if _is_railway_runtime() and _is_localhost(host):
        raise RuntimeError(
            "Invalid DATABASE_URL for Railway runtime: host is localhost/127.0.0.1 "
            f"(host={host}, port={port or '<missing>'}, database={db_name}). "
            "Use Railway Postgres reference, e.g. DATABASE_URL=${{Postgres.DATABASE_URL}}."
        )


def _db_url_diagnostics(database_url: str) -> str:
    parsed = urlparse(database_url)
    host = parsed.hostname or "<missing>"
    port = parsed.port or "<missing>"
    db_name = parsed.path.lstrip("/") or "<missing>"
    scheme = parsed.scheme or "<missing>"
    query = parsed.query or "<empty>"

    tips = []
    if _is_localhost(host):
        tips.append("Host points to localhost; in Railway use Postgres service reference in DATABASE_URL.")
    if scheme in {"postgres", "postgresql"}:
        tips.append("URL scheme is fine; app normalizes it to postgresql+psycopg internally.")
    if "sslmode" not in query:
        tips.append("No sslmode in URL query; external managed DBs often require sslmode=require.")
    if not tips:
        tips.append("URL structure looks valid; check network access, DB credentials, and DB service status.")

    return (
        f"scheme={scheme}, host={host}, port={port}, database={db_name}, query={query}; "
        f"tips={' | '.join(tips)}"
    )


def _validate_payment_env_for_runtime(errors: list[str], warnings: list[str]) -> None:
    is_production = settings.IS_PRODUCTION
    webhook_url = settings.PAYMEE_WEBHOOK_URL.strip()

    if not settings.PAYMEE_API_KEY.strip():
        if is_production:
            errors.append("PAYMEE_API_KEY is required in production.")
        else:
            warnings.append("PAYMEE_API_KEY is not set; payment init will be rejected.")

    if settings.PAYMEE_ENV not in {"sandbox", "live"}:
        errors.append(f"PAYMEE_ENV must be 'sandbox' or 'live', got '{settings.PAYMEE_ENV}'.")
    elif is_production and settings.PAYMEE_ENV == "sandbox":
        errors.append("PAYMEE_ENV is 'sandbox' - must be 'live' in production.")

    if settings.PAYMEE_MODE not in {"dynamic", "paylink"}:
        errors.append(f"PAYMEE_MODE must be 'dynamic' or 'paylink', got '{settings.PAYMEE_MODE}'.")
    elif settings.PAYMEE_MODE == MODE_DYNAMIC:
        if not webhook_url:
            warnings.append("PAYMEE_WEBHOOK_URL is not set; dynamic payments cannot be initialized.")
        elif not _is_http_url(webhook_url):
            errors.append("PAYMEE_WEBHOOK_URL must be an absolute http(s) URL.")
        elif is_production and (is_loopback_url(webhook_url) or "ngrok" in webhook_url):
            errors.append("PAYMEE_WEBHOOK_URL contains localhost/ngrok - use the production domain.")

    if settings.PAYMENT_TIMEOUT_MINUTES <= 0:
        errors.append("PAYMENT_TIMEOUT_MINUTES must be positive.")
    if settings.RECONCILIATION_INTERVAL_MINUTES <= 0:
        errors.append("RECONCILIATION_INTERVAL_MINUTES must be positive.")


def _validate_required_env_for_runtime() -> None:
    errors = []
    warnings = []
    is_railway = _is_railway_runtime()

    jwt_secret = settings.JWT_SECRET.strip()
    if not jwt_secret:
        errors.append("JWT_SECRET is required.")
    elif (is_railway or settings.IS_PRODUCTION) and jwt_secret == "change-me-in-production":
        errors.append(
            "JWT_SECRET uses insecure default value in a deployed runtime. "
            "Set JWT_SECRET to the identity provider's signing secret."
        )

    base_url, coerced_base = _normalize_http_url_for_railway(settings.BASE_URL, is_railway)
    if coerced_base:
        warnings.append(
            "BASE_URL has no scheme in Railway runtime and was normalized to https:// at startup."
        )
    parsed_base = urlparse(base_url)
    if not _is_http_url(base_url):
        errors.append("BASE_URL must be an absolute http(s) URL, e.g. https://your-app.up.railway.app")
    elif is_railway and _is_localhost(parsed_base.hostname):
        errors.append(
            "BASE_URL points to localhost in Railway runtime. "
            "Set BASE_URL to your public Railway domain."
        )

    cors_raw = settings.CORS_ORIGINS.strip()
    origins, coerced_origins = _get_effective_cors_origins(cors_raw, is_railway)
    if not origins:
        errors.append("CORS_ORIGINS must contain at least one comma-separated origin URL.")
    else:
        invalid_origins = [origin for origin in origins if not _is_http_url(origin)]
        if invalid_origins:
            errors.append(f"CORS_ORIGINS contains invalid URL(s): {', '.join(invalid_origins)}")
        if coerced_origins:
            warnings.append(
                "CORS_ORIGINS includes entries without scheme in Railway runtime and they were "
                f"normalized to https://: {', '.join(coerced_origins)}"
            )

        if is_railway:
            localhost_origins = [
                origin for origin in origins if _is_localhost(urlparse(origin).hostname)
            ]
            if localhost_origins:
                warnings.append(
                    "CORS_ORIGINS includes localhost in Railway runtime: "
                    f"{', '.join(localhost_origins)}"
                )

    _validate_payment_env_for_runtime(errors, warnings)

    if warnings:
        logger.warning("Startup environment warnings: %s", " | ".join(warnings))

    if errors:
        raise RuntimeError("Startup environment validation failed: " + " | ".join(errors))


@asynccontextmanager
async def lifespan(app: FastAPI):
    database_url = "<unavailable>"
    logger.info("Application startup initiated (APP_ENV=%s).", settings.APP_ENV)
    try:
        database_url = settings.DATABASE_URL
        logger.info("DATABASE_URL diagnostics at startup: %s", _db_url_diagnostics(database_url))
        _validate_database_url_for_runtime(database_url)
        _validate_required_env_for_runtime()
        init_db()
    except Exception as exc:
        diagnostics = (
            _db_url_diagnostics(database_url)
            if database_url != "<unavailable>"
            else "DATABASE_URL unavailable (missing or unreadable)."
        )
        logger.exception(
            "Database initialization failed: %s. DATABASE_URL diagnostics: %s",
            str(exc),
            diagnostics,
        )
        raise

    scheduler = None
    if settings.RECONCILIATION_ENABLED:
        scheduler = PaymentReconciliationScheduler.from_settings(SessionLocal)
        scheduler.start()
    else:
        logger.info("Payment reconciliation scheduler disabled (RECONCILIATION_ENABLED=false).")
    app.state.reconciliation_scheduler = scheduler

    logger.info("Application startup completed successfully.")
    yield

    if scheduler is not None:
        await scheduler.stop()
    logger.info("Application shutdown completed.")


app = FastAPI(
    title="Storefront Payments API",
    description=(
        "Order payment and inventory consistency core: stock reservation, Paymee card payments, "
        "webhook processing and reconciliation of abandoned payments."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Orders", "description": "Place orders (reserves stock) and list my orders."},
        {"name": "Payments", "description": "Init, verify, cancel and status of Paymee payments."},
        {"name": "Webhooks", "description": "Called by Paymee."},
    ],
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        **openapi_schema.get("components", {}).get("securitySchemes", {}),
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT issued by the storefront identity service",
        },
    }
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_effective_cors_origins(settings.CORS_ORIGINS, _is_railway_runtime())[0],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(payments.router, prefix="/api/paymee", tags=["Payments"])
if not settings.IS_PRODUCTION:
    app.include_router(payments.dev_router, prefix="/api/paymee", tags=["Payments"])
app.include_router(paymee_webhook.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/")
def root():
    return {"status": "ok", "service": "Storefront Payments API"}


@app.get("/health")
def health():
    return {"status": "ok"}
