from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from graphbug.core.config import settings
from graphbug.core.database import get_db
from graphbug.utils.logging.otel_logger import logger

router = APIRouter(
    tags=["Health"],
)

@router.get("/health")
async def health(db: Session = Depends(get_db)):
    """Liveness plus a database round trip"""
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {str(e)}")
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "service": settings.app_name,
        "database": database,
    }
