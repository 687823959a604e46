"""Phase classifier, its training data and its lifecycle."""

from breathflow.ml.classifier import PhaseClassifier
from breathflow.ml.lifecycle import ModelLifecycleManager

__all__ = [
    "ModelLifecycleManager",
    "PhaseClassifier",
]
