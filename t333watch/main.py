import logging

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from t333watch import __version__
from t333watch.config import Config
from t333watch.config.logging_config import configure_logging
from t333watch.middleware.request_id_middleware import RequestIDMiddleware, get_request_id
from t333watch.routes import admin, auth, health, packs, payments, premium
from t333watch.utils.exceptions import T333Error
from t333watch.utils.sentry_context import capture_error

configure_logging()
logger = logging.getLogger(__name__)

if Config.SENTRY_ENABLED and Config.SENTRY_DSN:
    sentry_sdk.init(
        dsn=Config.SENTRY_DSN,
        environment=Config.SENTRY_ENVIRONMENT,
        release=f"t333watch-api@{__version__}",
        traces_sample_rate=Config.SENTRY_TRACES_SAMPLE_RATE,
        # Twitch tokens travel in cookies and headers
        send_default_pii=False,
    )
    logger.info(f"Sentry initialized (environment: {Config.SENTRY_ENVIRONMENT})")
else:
    logger.info("Sentry disabled (SENTRY_ENABLED=false or SENTRY_DSN not set)")


def create_app() -> FastAPI:
    app = FastAPI(
        title="t333.watch API",
        description="Multi-stream Twitch viewing, Packs and premium billing",
        version=__version__,
    )

    # allow_credentials=True requires explicit origins, never "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(T333Error)
    async def domain_exception_handler(request: Request, exc: T333Error):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message}")
            capture_error(exc, context_type="request", context_data={"path": request.url.path})
            return JSONResponse(status_code=exc.status_code, content={"error": "Internal server error"})
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Missing or malformed fields are client errors
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Full detail goes to logs and Sentry only, never to the client."""
        request_id = get_request_id(request)
        logger.error(f"Unhandled exception (request {request_id}): {exc}", exc_info=True)
        capture_error(
            exc,
            context_type="request",
            context_data={"path": request.url.path, "request_id": request_id},
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(payments.router)
    app.include_router(premium.router)
    app.include_router(packs.router)
    app.include_router(admin.router)

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


# Export a default app instance for environments that import `app`
app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("t333watch.main:app", host="0.0.0.0", port=8000, reload=Config.IS_DEVELOPMENT)
