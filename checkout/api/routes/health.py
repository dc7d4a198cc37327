from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.orm import Session

from checkout.api.deps import get_redis
from checkout.db.session import get_db


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    """Readiness probe - returns 503 if dependencies are unavailable."""
    try:
        db.execute(text("SELECT 1"))
        get_redis().ping()
        return {"status": "ready"}
    except Exception as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e)}
