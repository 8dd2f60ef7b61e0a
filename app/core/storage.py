"""Snapshot content storage and metadata store."""

import logging
import os
import shutil
import tempfile
import uuid
from datetime import date, datetime
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.artifact import SnapshotArtifact
from app.core.errors import ConflictError, NotFoundError, StorageError
from app.core.periods import add_months
from app.models.snapshot import Snapshot

logger = logging.getLogger(__name__)


class LocalContentStorage:
    """Blob storage on the local filesystem, keyed by relative path."""

    def __init__(self, root_dir: Optional[str] = None):
        self.root_dir = os.path.abspath(root_dir or settings.local_storage_dir)

    def _full_path(self, path: str) -> str:
        full_path = os.path.abspath(os.path.join(self.root_dir, path))
        if os.path.commonpath([full_path, self.root_dir]) != self.root_dir:
            raise StorageError(f"Path escapes storage root: {path}")
        return full_path

    def put(self, path: str, content: bytes) -> str:
        """Write a blob atomically: readers see the old content or the new one, never a mix."""
        full_path = self._full_path(path)
        directory = os.path.dirname(full_path)
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, full_path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            raise StorageError(f"Failed to write {path}: {e}")
        return path

    def get(self, path: str) -> bytes:
        full_path = self._full_path(path)
        try:
            with open(full_path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise NotFoundError(f"Stored content not found: {path}")
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}")

    def exists(self, path: str) -> bool:
        return os.path.isfile(self._full_path(path))

    def delete(self, path: str) -> None:
        """Remove a blob; a missing blob is not an error."""
        try:
            os.remove(self._full_path(path))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}")

    def delete_prefix(self, prefix: str) -> None:
        """Remove every blob under a directory prefix."""
        full_path = self._full_path(prefix)
        if os.path.isdir(full_path):
            try:
                shutil.rmtree(full_path)
            except OSError as e:
                raise StorageError(f"Failed to delete {prefix}: {e}")


def snapshot_prefix(client_id: int, snapshot_date: date) -> str:
    return f"snapshots/{client_id}/{snapshot_date.isoformat()}"


def client_prefix(client_id: int) -> str:
    return f"snapshots/{client_id}"


class SnapshotStore:
    """
    Artifact blobs plus the snapshot metadata table.

    Each generation gets its own blob, so a regeneration never rewrites the
    content an existing row points at. Metadata is written only after the
    blob is in place, and the unique (client_id, snapshot_date) constraint
    decides which of two concurrent first generations wins.
    """

    def __init__(self, db: Session, storage: Optional[LocalContentStorage] = None):
        self.db = db
        self.storage = storage or LocalContentStorage()

    def find(self, client_id: int, snapshot_date: date) -> Optional[Snapshot]:
        return (
            self.db.query(Snapshot)
            .filter(Snapshot.client_id == client_id, Snapshot.snapshot_date == snapshot_date)
            .first()
        )

    def get_row(self, snapshot_id: int) -> Snapshot:
        snapshot = self.db.query(Snapshot).filter(Snapshot.id == snapshot_id).first()
        if not snapshot:
            raise NotFoundError(f"Snapshot {snapshot_id} not found")
        return snapshot

    def put(self, client_id: int, snapshot_date: date, artifact: SnapshotArtifact) -> str:
        """Write the artifact under a fresh generation path and return its locator."""
        generation = uuid.uuid4().hex[:16]
        path = f"{snapshot_prefix(client_id, snapshot_date)}/snapshot-{generation}.json"
        return self.storage.put(path, artifact.to_json())

    def get_bytes(self, locator: str) -> bytes:
        return self.storage.get(locator)

    def get(self, locator: str) -> SnapshotArtifact:
        return SnapshotArtifact.from_json(self.get_bytes(locator))

    def record(
        self,
        client_id: int,
        snapshot_date: date,
        locator: str,
        template_version: str,
        metrics_summary: Dict[str, float],
        existing: Optional[Snapshot] = None,
    ) -> Snapshot:
        """
        Insert or update the metadata row for a freshly written blob.

        Without ``existing`` this is a first generation and a unique
        violation means another caller got there first (ConflictError).
        With ``existing`` the row is repointed, the render pointer cleared
        and the superseded blob and PDF removed once the update commits.
        On any failure the new blob is removed so nothing is orphaned.
        """
        now = datetime.utcnow()
        expires_at = add_months(now, settings.snapshot_retention_months)
        stale_paths = []
        try:
            if existing is None:
                snapshot = Snapshot(
                    client_id=client_id,
                    snapshot_date=snapshot_date,
                    template_version=template_version,
                    storage_path=locator,
                    metrics_summary=metrics_summary,
                    created_at=now,
                    expires_at=expires_at,
                )
                self.db.add(snapshot)
            else:
                snapshot = existing
                # Another regeneration may have repointed the row since it was loaded.
                self.db.refresh(snapshot, with_for_update=True)
                stale_paths = [p for p in (snapshot.storage_path, snapshot.pdf_storage_path) if p and p != locator]
                snapshot.storage_path = locator
                snapshot.pdf_storage_path = None
                snapshot.template_version = template_version
                snapshot.metrics_summary = metrics_summary
                snapshot.expires_at = expires_at
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            self._discard(locator)
            raise ConflictError(
                f"Snapshot for client {client_id} and {snapshot_date.isoformat()} already exists"
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            self._discard(locator)
            logger.error(f"Failed to record snapshot for client {client_id} {snapshot_date}: {e}")
            raise StorageError(f"Failed to record snapshot metadata: {e}")

        self.db.refresh(snapshot)
        for path in stale_paths:
            self._discard(path)
        return snapshot

    def put_pdf(self, snapshot: Snapshot, content: bytes) -> str:
        """Write a rendered PDF next to the artifact it was rendered from."""
        name = os.path.splitext(os.path.basename(snapshot.storage_path))[0].replace("snapshot-", "report-")
        path = f"{snapshot_prefix(snapshot.client_id, snapshot.snapshot_date)}/{name}.pdf"
        return self.storage.put(path, content)

    def attach_pdf(self, snapshot: Snapshot, pdf_path: str, rendered_from: str) -> bool:
        """
        Point the row at a rendered PDF.

        Returns False (and drops the PDF) when the artifact was regenerated
        while rendering, since the PDF no longer matches the current content.
        """
        self.db.refresh(snapshot)
        if snapshot.storage_path != rendered_from:
            logger.warning(f"Snapshot {snapshot.id} was regenerated during rendering; discarding PDF")
            self._discard(pdf_path)
            return False
        previous_pdf = snapshot.pdf_storage_path
        snapshot.pdf_storage_path = pdf_path
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self._discard(pdf_path)
            raise StorageError(f"Failed to record PDF for snapshot {snapshot.id}: {e}")
        if previous_pdf and previous_pdf != pdf_path:
            self._discard(previous_pdf)
        return True

    def delete_row(self, snapshot: Snapshot) -> None:
        """Delete a metadata row, then its content."""
        prefix = snapshot_prefix(snapshot.client_id, snapshot.snapshot_date)
        self.db.delete(snapshot)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to delete snapshot {snapshot.id}: {e}")
        self.storage.delete_prefix(prefix)

    def delete(self, client_id: int, snapshot_date: date) -> None:
        snapshot = self.find(client_id, snapshot_date)
        if not snapshot:
            raise NotFoundError(f"No snapshot for client {client_id} and {snapshot_date.isoformat()}")
        self.delete_row(snapshot)

    def _discard(self, path: str) -> None:
        try:
            self.storage.delete(path)
        except StorageError as e:
            logger.error(f"Could not remove {path}: {e}")
