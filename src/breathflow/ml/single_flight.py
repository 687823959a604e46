"""Single-flight guard ensuring one training run per model store key."""

import logging
import threading

from collections.abc import Generator
from contextlib import contextmanager

from breathflow.errors import TrainingConflictError

logger = logging.getLogger(__name__)

__all__ = ["SingleFlight", "training_flights"]


class SingleFlight:
    """
    Tracks in-flight operations by key.

    A second attempt to hold a key that is already held fails immediately with
    :class:`TrainingConflictError` instead of waiting.

    Example:
        >>> flights = SingleFlight()
        >>> with flights.hold("models.db:breathing-model"):
        ...     train()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[str] = set()

    @contextmanager
    def hold(self, key: str) -> Generator[None]:
        with self._lock:
            if key in self._active:
                raise TrainingConflictError(key)
            self._active.add(key)
        logger.debug(f"Acquired single-flight slot {key!r}")

        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)
            logger.debug(f"Released single-flight slot {key!r}")

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active


# Process-wide registry shared by every classifier training against a store.
training_flights = SingleFlight()
