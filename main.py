import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import get_settings
from container import build_container
from errors import ServiceError
from logger import setup_logging
from routes import accounts, client

logger = logging.getLogger(__name__)


async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


def create_app(container=None) -> FastAPI:
    settings = container.settings if container is not None else get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "container", None) is None:
            app.state.container = build_container(settings)
        app.state.container.startup()
        yield

    app = FastAPI(title="Roadside Assistance API", lifespan=lifespan)
    app.state.container = container

    app.include_router(accounts.router)
    app.include_router(client.router)
    app.add_exception_handler(ServiceError, service_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def home():
        return {"message": "Roadside Assistance API is live"}

    return app


app = create_app()
