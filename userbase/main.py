from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from userbase.api.v1.endpoints import api_router
from userbase.core.config import Settings, settings as default_settings
from userbase.core.errors import UserbaseError
from userbase.core.logging import configure_logging
from userbase.db.session import Database
from userbase.services.alerts import AlertNotifier
from userbase.services.health import HealthChecker
from userbase.services.hive_client import HiveClient
from userbase.services.mailer import SmtpMailer

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application with its collaborators constructed once.

    The database, Hive client, mailer and alert notifier live on
    ``app.state`` and reach handlers through dependencies. A missing
    ``DATABASE_URL`` fails here, at startup, with a ConfigurationError.
    """
    settings = settings or default_settings
    configure_logging(settings)

    database = Database.from_settings(settings)
    hive_client = HiveClient(settings.HIVE_API_URL, timeout=settings.HIVE_TIMEOUT_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Userbase starting in {settings.ENVIRONMENT} mode")

        yield

        logger.info("Userbase shutting down")
        database.dispose()

    app = FastAPI(title="Userbase", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.hive_client = hive_client
    app.state.mailer = SmtpMailer.from_settings(settings)
    app.state.alerts = AlertNotifier(settings.USERBASE_ALERT_WEBHOOK_URL)
    app.state.health_checker = HealthChecker(
        database,
        hive_client,
        timeout=settings.HEALTH_TIMEOUT_SECONDS,
        cache_ttl=settings.HEALTH_CACHE_TTL_SECONDS,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,  # The session travels as a cookie
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UserbaseError)
    async def userbase_error_handler(request: Request, exc: UserbaseError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.error} ({exc.details})")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(include_details=not settings.is_production),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Rejected body for {request.method} {request.url.path}: {exc.errors()}")
        content = {"error": "Invalid request body"}
        if not settings.is_production:
            content["details"] = str(exc.errors())
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    app.include_router(api_router, prefix="/api/v1/userbase")

    @app.get("/")
    def read_root():
        return {"message": "Welcome to Userbase"}

    return app


app = create_app()
