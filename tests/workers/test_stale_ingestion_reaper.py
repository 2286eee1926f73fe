import asyncio
import datetime
from unittest.mock import patch

import pytest

from graphbug.models.db.repositories import IngestionStatus, Repository
from graphbug.utils.clock import utcnow
from graphbug.workers import stale_ingestion_reaper


@pytest.fixture
def stale_repository(make_repository):
    return make_repository(
        ingestion_status=IngestionStatus.PROCESSING.value,
        ingestion_started_at=utcnow() - datetime.timedelta(hours=1),
    )


def test_reap_once_fails_abandoned_ingestions(db, session_factory, stale_repository):
    with patch.object(stale_ingestion_reaper, "SessionLocal", session_factory):
        reaped = stale_ingestion_reaper.reap_once(max_age_seconds=60)

    assert reaped == 1
    db.expire_all()
    repository = db.get(Repository, stale_repository.id)
    assert repository.ingestion_status == IngestionStatus.FAILED.value
    assert repository.ingestion_error == "Ingestion did not finish within 60 seconds"


@pytest.mark.asyncio
async def test_run_stops_when_asked(db, session_factory, stale_repository):
    stop_event = asyncio.Event()

    with patch.object(stale_ingestion_reaper, "SessionLocal", session_factory):
        task = asyncio.create_task(stale_ingestion_reaper.run(interval_seconds=0.01, stop_event=stop_event))
        for _ in range(200):
            await asyncio.sleep(0.01)
            db.expire_all()
            if db.get(Repository, stale_repository.id).ingestion_status == IngestionStatus.FAILED.value:
                break
        stop_event.set()
        await asyncio.wait_for(task, timeout=5)

    assert db.get(Repository, stale_repository.id).ingestion_status == IngestionStatus.FAILED.value
