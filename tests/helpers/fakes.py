"""
Fake collaborators for lifecycle and pipeline tests.

``FakeClassifier`` mirrors the parts of :class:`PhaseClassifier` the lifecycle
manager and pipeline use, with scripted outcomes instead of a network.
"""

from collections.abc import Iterable

import numpy as np

from breathflow.analysis.shared.types import Prediction
from breathflow.constants import BreathPhase
from breathflow.ml.classifier import EpochMetrics, TrainingReport
from tests.helpers.synthetic_data import make_prediction


class FakeClassifier:
    """
    Scriptable stand-in for PhaseClassifier.

    Args:
        load_results: Successive return values of ``load()`` (last one repeats)
        train_error: Exception raised by ``train()``, if any
        build_error: Exception raised by ``build_untrained()``, if any
        predictions: Predictions (or exceptions) returned by ``predict()`` in order
    """

    name = "fake-model"
    key_prefix = "fake-model/"

    def __init__(
        self,
        load_results: Iterable[bool] = (False,),
        train_error: Exception | None = None,
        build_error: Exception | None = None,
        predictions: Iterable[Prediction | Exception] = (),
    ):
        self._load_results = list(load_results)
        self.train_error = train_error
        self.build_error = build_error
        self._predictions = list(predictions)
        self.calls: list[str] = []
        self.built = False
        self.saved = False
        self.features_seen: list[np.ndarray] = []

    def load(self) -> bool:
        self.calls.append("load")
        if len(self._load_results) > 1:
            return self._load_results.pop(0)
        return self._load_results[0]

    def train(self, **kwargs) -> TrainingReport:
        self.calls.append("train")
        if self.train_error is not None:
            raise self.train_error
        self.built = True
        return TrainingReport(
            dataset_size=kwargs.get("dataset_size", 10),
            train_samples=8,
            validation_samples=2,
            epochs=1,
            history=[EpochMetrics(epoch=1, loss=0.5, accuracy=0.8)],
        )

    def save(self) -> None:
        self.calls.append("save")
        self.saved = True

    def build_untrained(self) -> None:
        self.calls.append("build_untrained")
        if self.build_error is not None:
            raise self.build_error
        self.built = True

    def clear_persisted(self) -> int:
        self.calls.append("clear_persisted")
        return 3

    def predict(self, features: np.ndarray) -> Prediction:
        self.features_seen.append(features)
        if not self._predictions:
            return make_prediction(BreathPhase.INHALE)

        outcome = self._predictions.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
