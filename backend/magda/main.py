import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from magda.config import Settings, get_settings
from magda.exceptions import (
    AuthenticationError,
    DecryptionError,
    EnrichmentFailure,
    ImportFailure,
    MagdaError,
    NotFound,
    StorageUnavailable,
    ValidationError,
)
from magda.api.routes import accounts, assistant, providers, records, session, settings as settings_routes
from magda.services.container import Services, build_services

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFound: status.HTTP_404_NOT_FOUND,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    DecryptionError: status.HTTP_409_CONFLICT,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    ImportFailure: status.HTTP_502_BAD_GATEWAY,
    EnrichmentFailure: status.HTTP_502_BAD_GATEWAY,
}


async def magda_error_handler(request: Request, exc: MagdaError) -> JSONResponse:
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    body = {"detail": str(exc)}
    if isinstance(exc, ValidationError) and exc.errors:
        body["errors"] = jsonable_encoder(exc.errors)
    return JSONResponse(status_code=status_code, content=body)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = services or build_services(settings)
        await container.startup()
        app.state.services = container
        logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
        try:
            yield
        finally:
            await container.close()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MagdaError, magda_error_handler)

    # API routes
    app.include_router(session.router, prefix=settings.API_PREFIX, tags=["Session"])
    app.include_router(records.router, prefix=settings.API_PREFIX, tags=["Medical Records"])
    app.include_router(providers.router, prefix=settings.API_PREFIX, tags=["Providers"])
    app.include_router(accounts.router, prefix=settings.API_PREFIX, tags=["Linked Accounts"])
    app.include_router(settings_routes.router, prefix=settings.API_PREFIX, tags=["Settings"])
    app.include_router(assistant.router, prefix=settings.API_PREFIX, tags=["Health Assistant"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": settings.APP_NAME}

    return app


app = create_app()
