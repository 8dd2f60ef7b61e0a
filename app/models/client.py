"""Client model."""

from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship

from app.database import Base


class Client(Base):
    """Client model - an agency client that receives monthly reports."""

    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    primary_domain = Column(String(255))
    timezone = Column(String(100), default="UTC")
    contact_emails = Column(JSON, default=list)  # List of strings
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    data_sources = relationship(
        "DataSource", back_populates="client", cascade="all, delete-orphan"
    )
    snapshots = relationship(
        "Snapshot", back_populates="client", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name='{self.name}')>"
