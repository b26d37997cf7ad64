"""Health check endpoint for QuorumGate."""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from quorumgate.api.deps import get_db
from quorumgate.core.config import get_settings

router = APIRouter(tags=["health"])
settings = get_settings()


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
    finally:
        db.rollback()


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Basic health check with database connectivity."""
    database = check_database(db)
    healthy = database["status"] == "healthy"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "app": settings.app_name,
            "timestamp": datetime.utcnow().isoformat(),
            "checks": {"database": database},
        },
    )
