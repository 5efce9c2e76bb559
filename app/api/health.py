"""Health check API endpoints."""

from fastapi import APIRouter, Query

from app.core.health import check_database_connection, get_health_status
from app.core.logging import setup_logger

logger = setup_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(
    deep: bool = Query(default=False, description="Also check database connectivity")
):
    """
    Liveness check, with a database round trip when `deep=true`.

    The shallow check never touches the database so load balancer probes stay cheap.
    """
    if not deep:
        return get_health_status(db_status=None)

    db_status = await check_database_connection()
    if not db_status:
        logger.warning("Deep health check found the database unreachable")
    return get_health_status(db_status)
