"""Data source model - a client's connected external account."""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, Enum, JSON
from sqlalchemy.orm import relationship
import enum

from app.database import Base


class SourceType(str, enum.Enum):
    """Source type enum."""

    GOOGLE_ANALYTICS = "google_analytics"
    GOOGLE_ADS = "google_ads"
    SEARCH_CONSOLE = "search_console"


class DataSourceStatus(str, enum.Enum):
    """Connection status enum."""

    ACTIVE = "active"
    EXPIRED = "expired"
    DISCONNECTED = "disconnected"


class DataSource(Base):
    """DataSource model - one connected account of a given source type."""

    __tablename__ = "data_sources"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(SourceType), nullable=False, index=True)
    external_account_id = Column(String(255))  # GA4 property, Ads customer, Search Console site
    external_account_name = Column(String(255))
    credentials = Column(JSON)  # access_token, refresh_token, expires_at
    status = Column(Enum(DataSourceStatus), nullable=False, default=DataSourceStatus.ACTIVE, index=True)
    config = Column(JSON, default=dict)  # Per-source settings, validated by the adapter
    connected_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    client = relationship("Client", back_populates="data_sources")

    __table_args__ = (
        Index("idx_data_source_client_type", "client_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<DataSource(id={self.id}, client_id={self.client_id}, type={self.type})>"
