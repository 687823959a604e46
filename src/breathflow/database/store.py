"""
Key/value blob store for persisted classifier models.

Keys are slash-separated (``<model-name>/<part>``) so that everything belonging
to one model can be removed with a single prefix delete.
"""

import logging

from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import sessionmaker

from breathflow.database.models import ModelBlob, utc_now
from breathflow.database.session import get_engine, get_session_factory, session_scope

logger = logging.getLogger(__name__)

__all__ = ["ModelStore"]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ModelStore:
    """
    Blob storage addressed by model key.

    Uses the given engine, or the globally initialized one from
    :func:`breathflow.database.session.init_database`.

    Example:
        >>> store = ModelStore()
        >>> store.put("breathing-model/weight_data", payload)
        >>> store.get("breathing-model/weight_data") == payload
        True
    """

    def __init__(self, engine: Engine | None = None):
        if engine is None:
            self._engine = get_engine()
            self._session_factory = get_session_factory()
        else:
            self._engine = engine
            self._session_factory = sessionmaker(bind=engine)

    @property
    def identity(self) -> str:
        """
        Stable identifier for the underlying database.

        In-memory databases are private to their engine, so the engine id is
        part of their identity.
        """
        url = self._engine.url
        rendered = url.render_as_string(hide_password=True)
        if url.database in (None, "", ":memory:"):
            return f"{rendered}#{id(self._engine)}"
        return rendered

    def put(self, key: str, data: bytes) -> None:
        """Insert or replace the blob stored under ``key``."""
        if not key:
            raise ValueError("Store key must be non-empty")

        with session_scope(self._session_factory) as session:
            blob = session.get(ModelBlob, key)
            if blob is None:
                session.add(ModelBlob(key=key, data=data, size_bytes=len(data)))
            else:
                blob.data = data
                blob.size_bytes = len(data)
                blob.updated_at = utc_now()
        logger.debug(f"Stored {len(data)} bytes at {key}")

    def get(self, key: str) -> bytes | None:
        """Return the blob stored under ``key``, or None when absent."""
        with session_scope(self._session_factory) as session:
            blob = session.get(ModelBlob, key)
            return bytes(blob.data) if blob is not None else None

    def delete_by_prefix(self, prefix: str) -> int:
        """
        Delete every blob whose key starts with ``prefix``.

        Returns:
            Number of blobs removed
        """
        pattern = f"{_escape_like(prefix)}%"
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(ModelBlob).where(ModelBlob.key.like(pattern, escape="\\"))
            )
            removed = int(getattr(result, "rowcount", 0) or 0)
        logger.info(f"Removed {removed} stored blob(s) with prefix {prefix!r}")
        return removed

    def list_keys(self, prefix: str = "") -> list[str]:
        """List stored keys, optionally filtered by prefix."""
        pattern = f"{_escape_like(prefix)}%"
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(ModelBlob.key)
                .where(ModelBlob.key.like(pattern, escape="\\"))
                .order_by(ModelBlob.key)
            )
            return [row[0] for row in rows]

    def total_size(self, prefix: str = "") -> int:
        """Sum of stored blob sizes under ``prefix`` in bytes."""
        pattern = f"{_escape_like(prefix)}%"
        with session_scope(self._session_factory) as session:
            sizes = session.execute(
                select(ModelBlob.size_bytes).where(
                    ModelBlob.key.like(pattern, escape="\\")
                )
            )
            return sum(row[0] or 0 for row in sizes)
