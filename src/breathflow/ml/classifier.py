"""
Inhale/exhale phase classifier.

The classifier is a plain :class:`ClassifierModel` record (network, topology
description, metadata) operated on by free functions: :func:`build_untrained`,
:func:`train`, :func:`predict`, :func:`save` and :func:`load`.
:class:`PhaseClassifier` wraps those functions around a shared model reference
that is swapped only once a replacement is complete, so concurrent readers
never see a half-trained network.
"""

import io
import json
import logging
import pickle
import threading
import time

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import numpy as np
import torch

from pydantic import BaseModel, Field, ValidationError
from torch import nn
from torch.utils.data import DataLoader, TensorDataset

from breathflow.analysis.shared.types import PhaseProbabilities, Prediction
from breathflow.constants import CLASS_LABELS, BreathPhase
from breathflow.constants import ClassifierConstants as CC
from breathflow.constants import LifecycleConstants as LC
from breathflow.database.store import ModelStore
from breathflow.errors import ConfigurationError
from breathflow.ml.network import ArchitectureSpec, BreathingCNN
from breathflow.ml.single_flight import SingleFlight, training_flights
from breathflow.ml.synthetic_data import generate_training_data

logger = logging.getLogger(__name__)

__all__ = [
    "ClassifierModel",
    "EpochMetrics",
    "PhaseClassifier",
    "TrainingReport",
    "breathing_score",
    "build_untrained",
    "load",
    "predict",
    "save",
    "train",
]

FORMAT_VERSION = 1


class EpochMetrics(BaseModel):
    """Loss and accuracy for one training epoch."""

    epoch: int = Field(ge=1)
    loss: float
    accuracy: float = Field(ge=0, le=1)
    val_loss: float | None = None
    val_accuracy: float | None = Field(default=None, ge=0, le=1)


class TrainingReport(BaseModel):
    """
    Summary of a synthetic-data training run.

    Attributes:
        dataset_size: Total generated samples
        train_samples: Samples used for fitting
        validation_samples: Samples held out for validation
        epochs: Number of epochs run
        history: Per-epoch metrics
        duration_seconds: Wall-clock training time
    """

    dataset_size: int
    train_samples: int
    validation_samples: int
    epochs: int
    history: list[EpochMetrics] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def final_accuracy(self) -> float | None:
        return self.history[-1].accuracy if self.history else None

    @property
    def final_val_accuracy(self) -> float | None:
        return self.history[-1].val_accuracy if self.history else None


@dataclass(frozen=True)
class ClassifierModel:
    """Trained (or untrained fallback) network with its description."""

    network: BreathingCNN
    architecture: ArchitectureSpec
    classes: tuple[BreathPhase, ...] = CLASS_LABELS
    trained: bool = False
    report: TrainingReport | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def input_length(self) -> int:
        return self.architecture.input_length


# ============================================================================
# Free functions
# ============================================================================


def breathing_score(inhale: float, exhale: float) -> float:
    """
    Score how clearly a frame reads as breathing.

    Rewards both a confident winning class and a wide gap between classes.
    """
    confidence = max(inhale, exhale)
    clarity = abs(inhale - exhale)
    score = confidence * CC.SCORE_CONFIDENCE_WEIGHT + clarity * CC.SCORE_CLARITY_WEIGHT
    return float(min(1.0, max(0.0, score)))


def build_untrained(architecture: ArchitectureSpec | None = None) -> ClassifierModel:
    """Build a randomly initialized model in inference mode."""
    spec = architecture or ArchitectureSpec()
    network = BreathingCNN(spec)
    network.eval()
    return ClassifierModel(network=network, architecture=spec, trained=False)


def predict(model: ClassifierModel | None, features: np.ndarray) -> Prediction:
    """
    Classify one feature vector.

    Args:
        model: Model to run
        features: Feature vector of the model's input length

    Returns:
        Prediction with phase, confidence, probabilities and breathing score

    Raises:
        ConfigurationError: If no model is built or the vector has the wrong shape
    """
    if model is None:
        raise ConfigurationError("Model not built. Load, train or build it first.")

    values = np.asarray(features, dtype=np.float32)
    if values.shape != (model.input_length,):
        raise ConfigurationError(
            f"Feature vector must have shape ({model.input_length},), got {values.shape}"
        )

    with torch.no_grad():
        logits = model.network(torch.tensor(values).unsqueeze(0))
        probabilities = torch.softmax(logits, dim=-1)[0].cpu().numpy()

    inhale = float(probabilities[0])
    exhale = float(probabilities[1])
    index = int(np.argmax(probabilities))

    return Prediction(
        phase=model.classes[index],
        confidence=float(probabilities[index]),
        probabilities=PhaseProbabilities(inhale=inhale, exhale=exhale),
        breathing_score=breathing_score(inhale, exhale),
    )


def _evaluate(
    network: nn.Module, loss_fn: nn.Module, x: torch.Tensor, y: torch.Tensor
) -> tuple[float, float]:
    network.eval()
    with torch.no_grad():
        logits = network(x)
        loss = float(loss_fn(logits, y))
        accuracy = float((logits.argmax(dim=-1) == y).float().mean())
    return loss, accuracy


def train(
    dataset_size: int = CC.DATASET_SIZE,
    epochs: int = CC.EPOCHS,
    validation_split: float = CC.VALIDATION_SPLIT,
    batch_size: int = CC.BATCH_SIZE,
    learning_rate: float = CC.LEARNING_RATE,
    architecture: ArchitectureSpec | None = None,
    seed: int | None = None,
    on_epoch_end: Callable[[EpochMetrics], None] | None = None,
) -> tuple[ClassifierModel, TrainingReport]:
    """
    Train a fresh network on synthetic spectra.

    The trailing ``validation_split`` fraction of the (already shuffled)
    dataset is held out for validation.

    Args:
        dataset_size: Number of synthetic samples to generate
        epochs: Training epochs
        validation_split: Fraction of samples held out (0 disables validation)
        batch_size: Mini-batch size
        learning_rate: Adam learning rate
        architecture: Network topology (default topology if omitted)
        seed: Seed for data generation, initialization and batch order
        on_epoch_end: Callback invoked with each epoch's metrics

    Returns:
        Tuple of (trained model, training report)
    """
    if epochs < 1:
        raise ValueError(f"epochs must be >= 1 (got {epochs})")
    if not 0 <= validation_split < 1:
        raise ValueError(f"validation_split must be in [0, 1) (got {validation_split})")

    spec = architecture or ArchitectureSpec()
    rng = np.random.default_rng(seed)
    started = time.perf_counter()

    logger.info("Generating synthetic training data...")
    features, labels = generate_training_data(dataset_size, rng, spec.input_length)

    validation_count = int(len(labels) * validation_split)
    train_count = len(labels) - validation_count
    if train_count < 1:
        raise ValueError("validation_split leaves no training samples")

    x = torch.from_numpy(features)
    y = torch.from_numpy(labels)
    x_train, y_train = x[:train_count], y[:train_count]
    x_val, y_val = x[train_count:], y[train_count:]

    history: list[EpochMetrics] = []

    with torch.random.fork_rng(devices=[]):
        if seed is not None:
            torch.manual_seed(seed)

        network = BreathingCNN(spec)
        optimizer = torch.optim.Adam(network.parameters(), lr=learning_rate)
        loss_fn = nn.CrossEntropyLoss()
        loader = DataLoader(
            TensorDataset(x_train, y_train), batch_size=batch_size, shuffle=True
        )

        logger.info(
            f"Starting training: {train_count} samples, "
            f"{validation_count} validation, {epochs} epochs"
        )
        for epoch in range(1, epochs + 1):
            network.train()
            total_loss = 0.0
            correct = 0
            for batch_x, batch_y in loader:
                optimizer.zero_grad()
                logits = network(batch_x)
                loss = loss_fn(logits, batch_y)
                loss.backward()
                optimizer.step()

                total_loss += float(loss) * len(batch_y)
                correct += int((logits.argmax(dim=-1) == batch_y).sum())

            metrics = EpochMetrics(
                epoch=epoch,
                loss=total_loss / train_count,
                accuracy=correct / train_count,
            )
            if validation_count:
                val_loss, val_accuracy = _evaluate(network, loss_fn, x_val, y_val)
                metrics = metrics.model_copy(
                    update={"val_loss": val_loss, "val_accuracy": val_accuracy}
                )

            history.append(metrics)
            logger.info(
                f"Epoch {epoch}: loss = {metrics.loss:.4f}, "
                f"accuracy = {metrics.accuracy:.4f}"
                + (
                    f", val_accuracy = {metrics.val_accuracy:.4f}"
                    if metrics.val_accuracy is not None
                    else ""
                )
            )
            if on_epoch_end is not None:
                on_epoch_end(metrics)

    network.eval()
    report = TrainingReport(
        dataset_size=len(labels),
        train_samples=train_count,
        validation_samples=validation_count,
        epochs=epochs,
        history=history,
        duration_seconds=time.perf_counter() - started,
    )
    logger.info(f"Model training completed in {report.duration_seconds:.1f}s")

    model = ClassifierModel(network=network, architecture=spec, trained=True, report=report)
    return model, report


def _key(name: str, part: str) -> str:
    return f"{name}/{part}"


def save(model: ClassifierModel, store: ModelStore, name: str = LC.DEFAULT_MODEL_NAME) -> None:
    """
    Persist topology, weights and metadata under ``name``.

    Metadata is written last, so an interrupted save reads back as "no model".
    """
    buffer = io.BytesIO()
    torch.save(model.network.state_dict(), buffer)

    metadata = {
        "format_version": FORMAT_VERSION,
        "classes": [c.value for c in model.classes],
        "input_shape": [model.input_length, 1],
        "trained": model.trained,
        "total_params": model.network.count_params(),
        "saved_at": datetime.now(UTC).isoformat(),
        "training": model.report.model_dump(mode="json") if model.report else None,
    }

    store.put(_key(name, LC.TOPOLOGY_KEY), model.architecture.model_dump_json().encode())
    store.put(_key(name, LC.WEIGHTS_KEY), buffer.getvalue())
    store.put(_key(name, LC.METADATA_KEY), json.dumps(metadata).encode())
    logger.info(f"Model saved to store as {name!r}")


def load(store: ModelStore, name: str = LC.DEFAULT_MODEL_NAME) -> ClassifierModel | None:
    """
    Rebuild a persisted model.

    Returns:
        The model, or None when any part is missing or unreadable
    """
    topology = store.get(_key(name, LC.TOPOLOGY_KEY))
    weights = store.get(_key(name, LC.WEIGHTS_KEY))
    metadata_raw = store.get(_key(name, LC.METADATA_KEY))

    if topology is None or weights is None or metadata_raw is None:
        logger.info(f"No saved model found for {name!r}")
        return None

    try:
        spec = ArchitectureSpec.model_validate_json(topology)
        metadata = json.loads(metadata_raw)
        classes = tuple(BreathPhase(c) for c in metadata["classes"])
        if classes != CLASS_LABELS:
            raise ValueError(f"Unexpected class labels {metadata['classes']}")
        if list(metadata["input_shape"]) != [spec.input_length, 1]:
            raise ValueError(f"Unexpected input shape {metadata['input_shape']}")

        state_dict = torch.load(io.BytesIO(weights), map_location="cpu", weights_only=True)
        network = BreathingCNN(spec)
        network.load_state_dict(state_dict)
        network.eval()

        report_data = metadata.get("training")
        report = TrainingReport.model_validate(report_data) if report_data else None
    except (
        ValidationError,
        ValueError,
        KeyError,
        EOFError,
        RuntimeError,
        pickle.UnpicklingError,
    ) as e:
        logger.warning(f"Stored model {name!r} is unreadable, ignoring it: {e}")
        return None

    logger.info(f"Model {name!r} loaded from store")
    return ClassifierModel(
        network=network,
        architecture=spec,
        classes=classes,
        trained=bool(metadata.get("trained", False)),
        report=report,
        metadata=metadata,
    )


# ============================================================================
# Stateful facade
# ============================================================================


class PhaseClassifier:
    """
    Shared handle on the current phase-classification model.

    Training builds a new network and swaps it in on completion; inference
    always runs against a complete model. Only one training run per store and
    model name may be in flight (see :class:`SingleFlight`).

    Example:
        >>> classifier = PhaseClassifier(ModelStore())
        >>> if not classifier.load():
        ...     classifier.train(epochs=15)
        ...     classifier.save()
        >>> prediction = classifier.predict(features)
    """

    def __init__(
        self,
        store: ModelStore,
        name: str = LC.DEFAULT_MODEL_NAME,
        architecture: ArchitectureSpec | None = None,
        flights: SingleFlight = training_flights,
    ):
        self.store = store
        self.name = name
        self.architecture = architecture or ArchitectureSpec()
        self._flights = flights
        self._lock = threading.Lock()
        self._model: ClassifierModel | None = None

    @property
    def model(self) -> ClassifierModel | None:
        return self._model

    @property
    def is_built(self) -> bool:
        return self._model is not None

    @property
    def flight_key(self) -> str:
        return f"{self.store.identity}:{self.name}"

    @property
    def key_prefix(self) -> str:
        return f"{self.name}/"

    def _swap(self, model: ClassifierModel | None) -> None:
        with self._lock:
            self._model = model

    def predict(self, features: np.ndarray) -> Prediction:
        return predict(self._model, features)

    def build_untrained(self) -> ClassifierModel:
        model = build_untrained(self.architecture)
        self._swap(model)
        logger.warning("Built untrained model; predictions are unreliable")
        return model

    def train(
        self,
        dataset_size: int = CC.DATASET_SIZE,
        epochs: int = CC.EPOCHS,
        validation_split: float = CC.VALIDATION_SPLIT,
        **kwargs: Any,
    ) -> TrainingReport:
        """
        Train a replacement model and swap it in.

        Raises:
            TrainingConflictError: If this model is already being trained
        """
        with self._flights.hold(self.flight_key):
            model, report = train(
                dataset_size=dataset_size,
                epochs=epochs,
                validation_split=validation_split,
                architecture=self.architecture,
                **kwargs,
            )
            self._swap(model)
        return report

    def save(self) -> None:
        model = self._model
        if model is None:
            raise ConfigurationError("No model to save")
        save(model, self.store, self.name)

    def load(self) -> bool:
        model = load(self.store, self.name)
        if model is None:
            return False
        self._swap(model)
        return True

    def clear_persisted(self) -> int:
        """Delete every stored part of this model."""
        return self.store.delete_by_prefix(self.key_prefix)

    def info(self) -> dict[str, Any] | None:
        """Summary of the current model, or None if none is built."""
        model = self._model
        if model is None:
            return None

        report = model.report
        return {
            "name": self.name,
            "total_params": model.network.count_params(),
            "layers": len(list(model.network.modules())) - 1,
            "input_shape": [model.input_length, 1],
            "classes": [c.value for c in model.classes],
            "trained": model.trained,
            "final_accuracy": report.final_accuracy if report else None,
            "final_val_accuracy": report.final_val_accuracy if report else None,
        }
