"""Main FastAPI application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import chatbot, health, logs, preview
from app.core.auth import AuthenticationMiddleware, api_key_header
from app.core.config import settings
from app.core.exceptions import ChatPipelineException
from app.core.logging import setup_logger
from app.db.database import Base, engine
from app.models import ChatbotModel, DocumentModel, MessageModel  # noqa: F401

logger = setup_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME}, version={app.version}")

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}")
    await engine.dispose()


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed input as 400 with the first validation message."""
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    if detail.startswith("Value error, "):
        detail = detail[len("Value error, ") :]
    logger.warning(f"Invalid request to {request.url.path}: {detail}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": detail},
    )


async def chat_pipeline_exception_handler(
    request: Request, exc: ChatPipelineException
) -> JSONResponse:
    """Render application errors as JSON with their status code."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_application() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Conversational response pipeline for embeddable chatbots",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # Authentication middleware (must be added before other middlewares)
    app.add_middleware(AuthenticationMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ChatPipelineException, chat_pipeline_exception_handler)

    # Include API routers
    app.include_router(health.router)
    app.include_router(chatbot.router)
    app.include_router(logs.router, dependencies=[Depends(api_key_header)])
    app.include_router(preview.router, dependencies=[Depends(api_key_header)])

    return app


app = create_application()
