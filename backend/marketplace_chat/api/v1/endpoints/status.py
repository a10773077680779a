"""
Status and health check endpoints.

WHAT: Health monitoring for the database and typing sweeper
WHY: Quick diagnostics for the chat widget and ops
HOW: FastAPI endpoint calling database ping
"""

from fastapi import APIRouter, Request

from ....core.database import ping_database
from ....core.config import settings
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Overall application health check.

    Returns:
        JSON with overall health status
    """
    db_status = ping_database()
    db_available = db_status["available"]
    if not db_available:
        logger.error(f"Health check database failed: {db_status['error']}")

    presence = getattr(request.app.state, "presence", None)
    sweeper_running = presence is not None and presence.sweeper_running

    return {
        "status": "healthy" if db_available else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "database": {
                "available": db_available
            },
            "presence": {
                "sweeper_running": sweeper_running,
                "timeout_seconds": settings.TYPING_TIMEOUT_SECONDS
            }
        }
    }
