"""Snapshot model - metadata row pointing at a stored snapshot artifact."""

from datetime import datetime

from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Index, JSON, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base


class Snapshot(Base):
    """Snapshot model - one row per client per reported month."""

    __tablename__ = "snapshots"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False, index=True)  # First day of the reported month
    template_version = Column(String(50), nullable=False, default="1.0")
    storage_path = Column(String(500), nullable=False)
    pdf_storage_path = Column(String(500))  # Only valid for the current storage_path
    metrics_summary = Column(JSON, default=dict)  # Cache of headline figures from the artifact
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = Column(DateTime, index=True)

    client = relationship("Client", back_populates="snapshots")

    __table_args__ = (
        UniqueConstraint("client_id", "snapshot_date", name="uq_snapshot_client_date"),
        Index("idx_snapshot_client_date", "client_id", "snapshot_date"),
    )

    @property
    def has_pdf(self) -> bool:
        return bool(self.pdf_storage_path)

    def __repr__(self) -> str:
        return f"<Snapshot(id={self.id}, client_id={self.client_id}, snapshot_date={self.snapshot_date})>"
