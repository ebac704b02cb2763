"""FastAPI application factory for the functions server."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .state import close_http_client, init_start_time
from .api.routes import account, chat, health, titles

FUNCTIONS_PREFIX = "/functions/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager."""
    init_start_time()
    yield
    await close_http_client()


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies as 400 Bad Request."""
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request body", "errors": jsonable_encoder(exc.errors())},
    )


def create_app(
    title: str = "Aide Functions",
    debug: bool = False,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        title: Application title for OpenAPI docs
        debug: Enable debug mode
        cors_origins: List of allowed CORS origins (None = allow all)

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=title,
        description="Serverless-style functions for the aide virtual assistant",
        version=__version__,
        debug=debug,
        lifespan=lifespan,
    )

    if cors_origins is None:
        cors_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(chat.router, prefix=FUNCTIONS_PREFIX, tags=["Chat"])
    app.include_router(titles.router, prefix=FUNCTIONS_PREFIX, tags=["Titles"])
    app.include_router(account.router, prefix=FUNCTIONS_PREFIX, tags=["Account"])

    return app


# Create default application instance
app = create_app()
