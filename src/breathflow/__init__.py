"""
breathflow: breathing pattern control signal

Turns a live microphone spectrum into a smoothed, bounded signal describing
how rhythmic the listener's breathing is.
"""

from typing import Any

__all__ = ["BreathPipeline", "BreathingPatternAnalyzer", "PhaseClassifier"]


def __getattr__(name: str) -> Any:
    """Lazy load components that pull in torch."""
    if name == "BreathPipeline":
        from breathflow.pipeline import BreathPipeline

        return BreathPipeline
    if name == "PhaseClassifier":
        from breathflow.ml.classifier import PhaseClassifier

        return PhaseClassifier
    if name == "BreathingPatternAnalyzer":
        from breathflow.analysis.shared.pattern_analyzer import BreathingPatternAnalyzer

        return BreathingPatternAnalyzer
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
