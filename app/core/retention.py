"""Snapshot retention and client purge."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, StorageError
from app.core.storage import LocalContentStorage, SnapshotStore, client_prefix
from app.models.client import Client
from app.models.snapshot import Snapshot

logger = logging.getLogger(__name__)


def sweep_expired_snapshots(db: Session, storage: Optional[LocalContentStorage] = None, now: Optional[datetime] = None) -> int:
    """
    Delete snapshots whose retention window has passed.

    Rows go first, then content, so no row is ever left pointing at a
    deleted blob. A failure on one snapshot does not stop the sweep.
    """
    now = now or datetime.utcnow()
    store = SnapshotStore(db, storage)
    expired = (
        db.query(Snapshot)
        .filter(Snapshot.expires_at.isnot(None), Snapshot.expires_at < now)
        .order_by(Snapshot.expires_at)
        .all()
    )

    deleted = 0
    for snapshot in expired:
        snapshot_id = snapshot.id
        try:
            store.delete_row(snapshot)
            deleted += 1
        except StorageError as e:
            logger.error(f"Retention sweep failed for snapshot {snapshot_id}: {e}")

    logger.info(f"Retention sweep removed {deleted} of {len(expired)} expired snapshots")
    return deleted


def purge_client_snapshots(db: Session, client_id: int, storage: Optional[LocalContentStorage] = None) -> int:
    """Delete a client with its snapshots and data sources, then its stored content."""
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise NotFoundError(f"Client {client_id} not found")

    store = SnapshotStore(db, storage)
    count = db.query(Snapshot).filter(Snapshot.client_id == client_id).count()
    db.delete(client)
    db.commit()

    store.storage.delete_prefix(client_prefix(client_id))
    logger.info(f"Purged client {client_id} and {count} snapshots")
    return count
