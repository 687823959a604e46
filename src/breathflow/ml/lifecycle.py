"""
Model lifecycle: load, train on miss, fall back when training is unavailable.

State machine::

    loading ──► ready
    loading ──► training ──► ready
    training ──(conflict)──► wait, retry load ──► ready | ready (degraded)
    loading | training ──(failure)──► ready (degraded) | error
"""

import logging
import threading
import time

from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError

from breathflow.config import TrainingSettings
from breathflow.constants import LifecycleConstants as LC
from breathflow.constants import ModelState
from breathflow.errors import InitializationError, TrainingConflictError
from breathflow.ml.classifier import PhaseClassifier, TrainingReport

logger = logging.getLogger(__name__)

__all__ = ["ModelLifecycleManager", "StateListener"]

StateListener = Callable[[ModelState, ModelState], None]


class ModelLifecycleManager:
    """
    Drives a :class:`PhaseClassifier` from boot to a usable model.

    Initialization first tries the persisted model, trains and saves a new one
    on a miss, and falls back to an untrained network (flagged ``degraded``)
    when training conflicts with another run or fails. Only when even the
    fallback cannot be built does the manager enter ``error``.

    Args:
        classifier: Classifier whose model is managed
        training: Training parameters used on a load miss
        grace_period: Seconds to wait before re-checking the store after a
            training conflict
        sleep: Sleep function (injectable for tests)

    Example:
        >>> manager = ModelLifecycleManager(PhaseClassifier(ModelStore()))
        >>> manager.initialize()
        >>> manager.state
        <ModelState.READY: 'ready'>
    """

    def __init__(
        self,
        classifier: PhaseClassifier,
        training: TrainingSettings | None = None,
        grace_period: float = LC.CONFLICT_GRACE_PERIOD,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.classifier = classifier
        self.training = training or TrainingSettings()
        self.grace_period = grace_period
        self._sleep = sleep

        self._lock = threading.RLock()
        self._state = ModelState.LOADING
        self._history: list[ModelState] = [ModelState.LOADING]
        self._listeners: list[StateListener] = []
        self._thread: threading.Thread | None = None

        self.degraded = False
        self.warning: str | None = None
        self.error: str | None = None
        self.report: TrainingReport | None = None

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def history(self) -> list[ModelState]:
        """Every state entered so far, oldest first."""
        with self._lock:
            return list(self._history)

    @property
    def is_ready(self) -> bool:
        return self._state == ModelState.READY

    @property
    def is_busy(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def add_listener(self, callback: StateListener) -> None:
        """Register ``callback(previous, current)`` for state changes."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: StateListener) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def describe(self) -> str:
        """Short human-readable status line."""
        if self._state == ModelState.ERROR:
            return f"Model error: {self.error}"
        if self._state == ModelState.READY and self.degraded:
            return f"Model ready (degraded): {self.warning}"
        return {
            ModelState.LOADING: "Loading model...",
            ModelState.TRAINING: "Training model on synthetic breathing data...",
            ModelState.READY: "Model ready",
        }[self._state]

    def _set_state(self, state: ModelState) -> None:
        with self._lock:
            previous = self._state
            if previous == state:
                return
            self._state = state
            self._history.append(state)
            listeners = list(self._listeners)

        logger.info(f"Model state: {previous.value} -> {state.value}")
        for listener in listeners:
            try:
                listener(previous, state)
            except Exception:
                logger.exception("Model state listener failed")

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self, background: bool = False) -> threading.Thread | None:
        """
        Bring the classifier to a usable model.

        Args:
            background: Run on a daemon thread instead of blocking

        Returns:
            The worker thread when ``background`` is set, else None
        """
        return self._launch(clear_first=False, background=background)

    def force_retrain(self, background: bool = False) -> threading.Thread | None:
        """Delete the persisted model and re-run initialization from scratch."""
        return self._launch(clear_first=True, background=background)

    def wait(self, timeout: float | None = None) -> bool:
        """
        Wait for a background initialization to finish.

        Returns:
            True if no initialization is still running
        """
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return not self.is_busy

    def _launch(self, clear_first: bool, background: bool) -> threading.Thread | None:
        with self._lock:
            if self.is_busy:
                logger.info("Model initialization already running")
                return self._thread

            if not background:
                self._thread = None
            else:
                self._thread = threading.Thread(
                    target=self._run,
                    args=(clear_first,),
                    name="breathflow-model-init",
                    daemon=True,
                )
                self._thread.start()
                return self._thread

        self._run(clear_first)
        return None

    def _run(self, clear_first: bool) -> None:
        self.degraded = False
        self.warning = None
        self.error = None
        self._set_state(ModelState.LOADING)

        try:
            if clear_first:
                removed = self.classifier.clear_persisted()
                logger.info(f"Force retrain: cleared {removed} stored model part(s)")

            if self.classifier.load():
                self._set_state(ModelState.READY)
                return

            self._set_state(ModelState.TRAINING)
            try:
                self.report = self.classifier.train(**self.training.model_dump())
            except TrainingConflictError as e:
                logger.warning(f"{e}; waiting {self.grace_period}s for the other run")
                self._resolve_conflict()
                return

            self._save_trained()
            self._set_state(ModelState.READY)
        except Exception as e:
            logger.error(f"Model initialization failed: {e}", exc_info=True)
            self._fall_back(e)

    def _save_trained(self) -> None:
        try:
            self.classifier.save()
        except SQLAlchemyError as e:
            logger.warning(f"Trained model could not be saved, keeping it in memory: {e}")

    def _resolve_conflict(self) -> None:
        self._sleep(self.grace_period)
        if self.classifier.load():
            logger.info("Loaded model trained by the concurrent run")
            self._set_state(ModelState.READY)
            return

        logger.warning("No model available after conflict grace period")
        self._fall_back(None)

    def _fall_back(self, cause: Exception | None) -> None:
        try:
            self.classifier.build_untrained()
        except Exception as e:
            error = InitializationError(f"Fallback model could not be built: {e}")
            if cause is not None:
                error.__cause__ = cause
            logger.error(str(error))
            self.error = str(error)
            self._set_state(ModelState.ERROR)
            return

        self.degraded = True
        self.warning = LC.FALLBACK_WARNING
        logger.warning(self.warning)
        self._set_state(ModelState.READY)
