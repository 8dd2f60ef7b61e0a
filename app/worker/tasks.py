"""Celery tasks for snapshot generation, rendering and retention."""

import asyncio
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from app.config import settings
from app.core import retention
from app.core.errors import ConflictError, NotFoundError, StorageError, ValidationError
from app.core.periods import last_completed_month
from app.core.snapshots import SnapshotService
from app.database import SessionLocal
from app.models.client import Client
from app.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


def get_db() -> Session:
    """Get database session."""
    return SessionLocal()


@celery_app.task(bind=True, max_retries=3)
def generate_snapshot(self, client_id: int, year: int, month: int, regenerate: bool = False):
    """Generate one client-month snapshot."""
    logger.info(f"Generating snapshot for client {client_id} {year:04d}-{month:02d}")
    db = get_db()
    try:
        service = SnapshotService(db)
        result = asyncio.run(service.generate(client_id, year, month, regenerate=regenerate))
        return result.model_dump(mode="json", by_alias=True)
    except ConflictError as e:
        logger.info(f"Skipping client {client_id}: {e}")
        return None
    except (NotFoundError, ValidationError) as e:
        logger.error(f"Cannot generate snapshot for client {client_id}: {e}")
        return None
    except StorageError as e:
        logger.error(f"Storage failure for client {client_id} {year:04d}-{month:02d}: {e}")
        raise self.retry(exc=e, countdown=300)
    finally:
        db.close()


@celery_app.task
def generate_monthly_snapshots():
    """Queue last month's snapshot for every active client."""
    today = datetime.now(ZoneInfo(settings.timezone)).date()
    year, month = last_completed_month(today)
    logger.info(f"Starting monthly snapshot run for {year:04d}-{month:02d}")
    db = get_db()
    try:
        client_ids = [c.id for c in db.query(Client.id).filter(Client.is_active == True).all()]  # noqa: E712
        if not client_ids:
            logger.warning("No active clients found")
            return 0

        for client_id in client_ids:
            generate_snapshot.delay(client_id, year, month)

        logger.info(f"Queued {len(client_ids)} clients for {year:04d}-{month:02d}")
        return len(client_ids)
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=2)
def render_snapshot_pdf(self, snapshot_id: int):
    """Render a snapshot to PDF."""
    db = get_db()
    try:
        service = SnapshotService(db)
        return service.render_pdf(snapshot_id).to_dict()
    except ConflictError as e:
        logger.warning(f"Re-rendering snapshot {snapshot_id}: {e}")
        raise self.retry(exc=e, countdown=5)
    except NotFoundError as e:
        logger.error(f"Cannot render snapshot {snapshot_id}: {e}")
        return None
    finally:
        db.close()


@celery_app.task
def sweep_expired_snapshots():
    """Delete snapshots past their retention window."""
    db = get_db()
    try:
        return retention.sweep_expired_snapshots(db)
    finally:
        db.close()
