"""
SQLAlchemy ORM models for the breathflow model store.

A trained classifier is persisted as several named blobs (topology, weights,
metadata) under a shared key prefix, one row per blob.
"""

from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, LargeBinary, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC timestamp for database defaults."""
    return datetime.now(UTC)


class ModelBlob(Base):
    """Opaque binary value addressed by a slash-separated key."""

    __tablename__ = "model_blobs"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[bytes] = mapped_column(LargeBinary)
    size_bytes: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("length(key) > 0", name="chk_blob_key"),)

    def __repr__(self) -> str:
        return f"<ModelBlob(key={self.key}, size={self.size_bytes})>"
