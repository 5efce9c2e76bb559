"""Authentication middleware and utilities."""

import secrets

from fastapi import HTTPException, Header, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.config import settings
from app.core.logging import setup_logger

logger = setup_logger(__name__)

# Security scheme for OpenAPI documentation
api_key_header = APIKeyHeader(name="Ai-Token", auto_error=False)

# Widget-facing routes are reachable without an operator token
PUBLIC_PATH_PREFIX = "/api/public/"


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Middleware to check for valid authentication token on operator routes."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        # Endpoints that don't require authentication
        self.excluded_paths = {"/health", "/docs", "/redoc", "/openapi.json"}

    def _is_excluded(self, path: str) -> bool:
        return path in self.excluded_paths or path.startswith(PUBLIC_PATH_PREFIX)

    async def dispatch(self, request: Request, call_next):
        """Process the request and check authentication."""
        if self._is_excluded(request.url.path) or request.method == "OPTIONS":
            return await call_next(request)

        auth_token = request.headers.get("Ai-Token")

        if not auth_token:
            logger.warning(f"Missing Ai-Token header for path: {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Missing Ai-Token header"},
            )

        if not settings.AUTH_TOKEN or not secrets.compare_digest(
            auth_token, settings.AUTH_TOKEN
        ):
            logger.warning(f"Invalid Ai-Token for path: {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid authentication token"},
            )

        logger.debug(f"Authentication successful for path: {request.url.path}")
        return await call_next(request)


async def get_user_id(
    user_id: str = Header(..., alias="User-Id", description="Operator identifier")
) -> int:
    """
    FastAPI dependency to extract the operator id from request headers.

    Raises:
        HTTPException: 400 if the User-Id header is blank or not numeric
    """
    if not user_id or not user_id.strip().isdigit():
        logger.warning("Invalid or empty User-Id header provided")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing or invalid User-Id header",
        )

    return int(user_id.strip())
