"""Health check module for application monitoring."""

from typing import Any, Dict, Optional

from sqlalchemy import text

from app.core.config import settings
from app.core.logging import setup_logger
from app.db.database import engine

logger = setup_logger(__name__)


async def check_database_connection() -> bool:
    """Check if the database connection is healthy."""
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
    return True


def get_health_status(db_status: Optional[bool]) -> Dict[str, Any]:
    """
    Build the health payload.

    Args:
        db_status: Database reachability, or None when it was not checked
    """
    data: Dict[str, Any] = {
        "app": settings.APP_NAME,
        "environment": settings.ENVIRONMENT,
        "provider_configured": bool(settings.OPENAI_API_KEY),
    }
    if db_status is None:
        data.update(status="healthy", database="not_checked")
        return {"message": "Service is healthy", "data": data}

    status = "healthy" if db_status else "unhealthy"
    data.update(status=status, database="connected" if db_status else "disconnected")
    return {"message": f"Service is {status}", "data": data}
