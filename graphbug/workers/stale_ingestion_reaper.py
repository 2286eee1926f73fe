import asyncio
from typing import Optional

from graphbug.core.config import settings
from graphbug.core.database import SessionLocal
from graphbug.services.ingestion.ingestion_client import get_ingestion_client
from graphbug.services.ingestion.ingestion_service import IngestionService
from graphbug.utils.exception import DatabaseOperationError
from graphbug.utils.logging.otel_logger import logger


def reap_once(max_age_seconds: Optional[float] = None) -> int:
    """Fail abandoned ``processing`` rows using a fresh session."""
    db = SessionLocal()
    try:
        service = IngestionService(db=db, client=get_ingestion_client())
        return service.reap_stale_ingestions(max_age_seconds)
    finally:
        db.close()


async def run(
    interval_seconds: Optional[float] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    interval = interval_seconds if interval_seconds is not None else settings.INGESTION_REAPER_INTERVAL_SECONDS
    stop_event = stop_event or asyncio.Event()
    logger.info(
        f"Stale ingestion reaper started (interval {interval:g}s, "
        f"stale after {settings.INGESTION_STALE_AFTER_SECONDS:g}s)"
    )

    while not stop_event.is_set():
        try:
            reaped = await asyncio.to_thread(reap_once)
            if reaped:
                logger.info(f"Reaper marked {reaped} ingestion(s) as failed")
        except DatabaseOperationError as e:
            logger.error(f"Reaper pass failed: {e.message}")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    logger.info("Stale ingestion reaper stopped")


async def main():
    try:
        await run()
    except Exception as e:
        logger.error(f"Error running stale ingestion reaper: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
