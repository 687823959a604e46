"""Database layer for breathflow."""

from breathflow.database.store import ModelStore

__all__ = [
    "ModelStore",
]
