"""
Breathing pattern analysis over classifier predictions.

This module turns the per-frame stream of (phase, confidence) predictions into
phase transitions and complete breathing cycles, scores how rhythmic those
cycles are, and smooths the score into a bounded control signal suitable for
driving animation.
"""

import logging
import time

from collections import deque
from collections.abc import Callable
from typing import Any

import numpy as np

from scipy import stats

from breathflow.analysis.shared.types import (
    BreathCycle,
    PatternAnalysis,
    PatternMetrics,
    PhaseTransition,
    Prediction,
)
from breathflow.constants import BreathPhase, PatternQuality
from breathflow.constants import PatternAnalysisConstants as PAC

logger = logging.getLogger(__name__)

__all__ = ["BreathingPatternAnalyzer"]


def _coefficient_of_variation(values: np.ndarray) -> float:
    """Population std / mean; infinite when the mean is not positive."""
    mean = float(np.mean(values))
    if mean <= 0:
        return float("inf")
    return float(stats.variation(values))


class BreathingPatternAnalyzer:
    """
    Detects rhythmic breathing from a stream of phase predictions.

    The analyzer owns all of its state: the bounded transition and cycle
    histories, the derived metrics and the smoothed signal. It has a single
    writer (the frame tick) and is not thread-safe.

    Example:
        >>> analyzer = BreathingPatternAnalyzer()
        >>> for prediction in predictions:
        ...     analysis = analyzer.process_prediction(prediction)
        >>> print(f"{analysis.pattern_quality.value}: {analysis.pattern_signal:.2f}")
    """

    def __init__(
        self,
        confidence_floor: float = PAC.CONFIDENCE_FLOOR,
        min_phase_duration: float = PAC.MIN_PHASE_DURATION,
        min_cycle_duration: float = PAC.MIN_CYCLE_DURATION,
        max_cycle_duration: float = PAC.MAX_CYCLE_DURATION,
        cycle_history_size: int = PAC.CYCLE_HISTORY_SIZE,
        transition_history_size: int = PAC.TRANSITION_HISTORY_SIZE,
        smoothing_factor: float = PAC.SMOOTHING_FACTOR,
        baseline_noise: float = PAC.BASELINE_NOISE,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the analyzer.

        Args:
            confidence_floor: Predictions below this confidence are ignored
            min_phase_duration: Shortest phase (seconds) that counts as a transition
            min_cycle_duration: Shortest valid breathing cycle (seconds)
            max_cycle_duration: Longest valid breathing cycle (seconds)
            cycle_history_size: Number of cycles retained for metrics
            transition_history_size: Number of transitions retained for metrics
            smoothing_factor: Exponential smoothing factor for the signal
            baseline_noise: Signal level reported when no pattern is present
            clock: Monotonic time source in seconds
        """
        self.confidence_floor = confidence_floor
        self.min_phase_duration = min_phase_duration
        self.min_cycle_duration = min_cycle_duration
        self.max_cycle_duration = max_cycle_duration
        self.smoothing_factor = smoothing_factor
        self.baseline_noise = baseline_noise
        self._clock = clock

        self.cycle_history: deque[BreathCycle] = deque(maxlen=cycle_history_size)
        self.phase_transitions: deque[PhaseTransition] = deque(
            maxlen=transition_history_size
        )
        self.total_cycles = 0
        self.metrics = PatternMetrics()
        self.pattern_signal = baseline_noise

        self.last_phase = BreathPhase.INHALE
        self.last_phase_time = self._clock()
        self._current_cycle_start: float | None = None

    # ------------------------------------------------------------------
    # Stream processing
    # ------------------------------------------------------------------

    def process_prediction(
        self, prediction: Prediction, timestamp: float | None = None
    ) -> PatternAnalysis:
        """
        Fold one prediction into the pattern state.

        Low-confidence predictions leave the state untouched and return the
        current analysis.

        Args:
            prediction: Classifier output for the frame
            timestamp: Frame capture time in seconds (defaults to the clock)

        Returns:
            PatternAnalysis reflecting the updated state
        """
        if prediction.confidence < self.confidence_floor:
            return self.get_current_analysis()

        now = self._clock() if timestamp is None else timestamp

        if prediction.phase != self.last_phase:
            self._record_phase_transition(prediction.phase, now)

        self._update_current_cycle(now)
        self.metrics = self._analyze_pattern_metrics()
        self._update_pattern_signal()

        return self.get_current_analysis()

    def _record_phase_transition(self, to_phase: BreathPhase, timestamp: float) -> None:
        """Record a transition unless the previous phase was too short."""
        phase_duration = timestamp - self.last_phase_time

        if phase_duration < self.min_phase_duration:
            logger.debug(
                f"Filtering short phase: {self.last_phase.value}→{to_phase.value} "
                f"({phase_duration * 1000:.0f}ms)"
            )
            return

        transition = PhaseTransition(
            from_phase=self.last_phase,
            to_phase=to_phase,
            timestamp=timestamp,
            duration=phase_duration,
        )
        self.phase_transitions.append(transition)
        self.last_phase = to_phase
        self.last_phase_time = timestamp

        logger.debug(
            f"Phase transition: {transition.from_phase.value}→"
            f"{transition.to_phase.value} ({phase_duration:.1f}s)"
        )

        self._check_for_complete_cycle()

    def _check_for_complete_cycle(self) -> None:
        """Emit a cycle when the two newest transitions alternate in range."""
        if len(self.phase_transitions) < 2:
            return

        previous = self.phase_transitions[-2]
        latest = self.phase_transitions[-1]

        if latest.to_phase == previous.to_phase:
            return

        cycle_duration = latest.timestamp - previous.timestamp
        if not self.min_cycle_duration <= cycle_duration <= self.max_cycle_duration:
            return

        cycle = BreathCycle(
            start_time=previous.timestamp,
            end_time=latest.timestamp,
            duration=cycle_duration,
            transitions=(previous, latest),
        )
        self.cycle_history.append(cycle)
        self.total_cycles += 1

        logger.debug(
            f"Breathing cycle detected: {cycle_duration:.1f}s "
            f"(total: {self.total_cycles})"
        )

    def _update_current_cycle(self, timestamp: float) -> None:
        """Track the in-progress cycle, dropping it once it runs too long."""
        if self._current_cycle_start is None:
            self._current_cycle_start = timestamp
        elif timestamp - self._current_cycle_start > self.max_cycle_duration:
            self._current_cycle_start = None

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _analyze_pattern_metrics(self) -> PatternMetrics:
        """Recompute metrics from the current histories."""
        cycle_count = len(self.cycle_history)

        if cycle_count < 2:
            return PatternMetrics()

        if cycle_count == 2:
            return PatternMetrics(
                cycle_consistency=PAC.SEED_CONSISTENCY,
                rhythm_strength=PAC.SEED_RHYTHM,
                pattern_stability=PAC.SEED_STABILITY,
                overall_score=PAC.SEED_OVERALL,
            )

        durations = np.array([cycle.duration for cycle in self.cycle_history])

        cycle_consistency = max(
            0.0, 1.0 - _coefficient_of_variation(durations) * PAC.CONSISTENCY_CV_WEIGHT
        )
        rhythm_strength = self._calculate_rhythm_strength()
        pattern_stability = self._calculate_pattern_stability(durations)

        overall_score = (
            cycle_consistency * PAC.CONSISTENCY_WEIGHT
            + rhythm_strength * PAC.RHYTHM_WEIGHT
            + pattern_stability * PAC.STABILITY_WEIGHT
        )

        return PatternMetrics(
            cycle_consistency=min(1.0, cycle_consistency),
            rhythm_strength=min(1.0, rhythm_strength),
            pattern_stability=min(1.0, pattern_stability),
            overall_score=min(1.0, overall_score),
        )

    def _calculate_rhythm_strength(self) -> float:
        """Regularity of the intervals between recent transitions."""
        recent = list(self.phase_transitions)[-PAC.RHYTHM_TRANSITION_WINDOW :]
        timestamps = np.array([t.timestamp for t in recent])
        intervals = np.diff(timestamps)

        if len(intervals) < PAC.RHYTHM_MIN_INTERVALS:
            return 0.0

        cv = _coefficient_of_variation(intervals)
        return max(0.0, 1.0 - cv * PAC.RHYTHM_CV_WEIGHT)

    def _calculate_pattern_stability(self, durations: np.ndarray) -> float:
        """Duration spread over the most recent cycles."""
        if len(durations) < PAC.STABILITY_WINDOW:
            return 0.0

        recent = durations[-PAC.STABILITY_WINDOW :]
        return max(0.0, 1.0 - _coefficient_of_variation(recent))

    # ------------------------------------------------------------------
    # Signal
    # ------------------------------------------------------------------

    def _update_pattern_signal(self) -> None:
        """Move the signal a fixed fraction of the way toward its target."""
        target = self.target_signal(self.metrics.overall_score)
        self.pattern_signal += (target - self.pattern_signal) * self.smoothing_factor
        self.pattern_signal = float(np.clip(self.pattern_signal, self.baseline_noise, 1.0))

    def target_signal(self, overall_score: float) -> float:
        """Signal level the smoother converges to for a given score."""
        if overall_score <= PAC.SIGNAL_ACTIVATION_SCORE:
            return self.baseline_noise

        strength = overall_score**PAC.SIGNAL_CURVE_EXPONENT
        return min(1.0, self.baseline_noise + strength * (1.0 - self.baseline_noise))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @property
    def is_pattern_detected(self) -> bool:
        return self.metrics.overall_score > PAC.PATTERN_DETECTED_SCORE

    @property
    def pattern_quality(self) -> PatternQuality:
        """Human-readable quality label for the overall score."""
        score = self.metrics.overall_score

        if score < PAC.QUALITY_WEAK:
            return PatternQuality.NONE
        if score < PAC.QUALITY_MODERATE:
            return PatternQuality.WEAK
        if score < PAC.QUALITY_STRONG:
            return PatternQuality.MODERATE
        if score < PAC.QUALITY_EXCELLENT:
            return PatternQuality.STRONG
        return PatternQuality.EXCELLENT

    @property
    def average_cycle_duration(self) -> float | None:
        if not self.cycle_history:
            return None
        return float(np.mean([cycle.duration for cycle in self.cycle_history]))

    def get_current_analysis(self) -> PatternAnalysis:
        """Build the analysis record for the current state."""
        last_cycle = self.cycle_history[-1] if self.cycle_history else None

        return PatternAnalysis(
            metrics=self.metrics,
            pattern_signal=self.pattern_signal,
            is_pattern_detected=self.is_pattern_detected,
            pattern_quality=self.pattern_quality,
            total_cycles=self.total_cycles,
            last_cycle_duration=last_cycle.duration if last_cycle else None,
            average_cycle_duration=self.average_cycle_duration,
            recent_transitions=list(self.phase_transitions)[-PAC.RECENT_TRANSITIONS :],
            recent_cycles=list(self.cycle_history)[-PAC.RECENT_CYCLES :],
            current_cycle_active=self._current_cycle_start is not None,
        )

    def get_visualization_data(
        self, window: float = PAC.VISUALIZATION_WINDOW, now: float | None = None
    ) -> dict[str, Any]:
        """
        Timeline data for recent phases and cycles.

        Relative positions are fractions (0-1) of the window ending at ``now``.

        Args:
            window: Window length in seconds
            now: End of the window (defaults to the clock)

        Returns:
            Dictionary with recent phases, recent cycles and the current signal
        """
        now = self._clock() if now is None else now
        window_start = now - window

        recent_phases = [
            {
                "phase": t.to_phase.value,
                "timestamp": t.timestamp,
                "relative_time": (t.timestamp - window_start) / window,
            }
            for t in self.phase_transitions
            if now - t.timestamp < window
        ]
        recent_cycles = [
            {
                "duration": c.duration,
                "start_time": c.start_time,
                "end_time": c.end_time,
                "relative_start": (c.start_time - window_start) / window,
                "relative_end": (c.end_time - window_start) / window,
            }
            for c in self.cycle_history
            if now - c.end_time < window
        ]

        return {
            "time_window": window,
            "recent_phases": recent_phases,
            "recent_cycles": recent_cycles,
            "current_signal": self.pattern_signal,
        }

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Clear all histories, metrics and the signal."""
        self.cycle_history.clear()
        self.phase_transitions.clear()
        self.total_cycles = 0
        self.metrics = PatternMetrics()
        self.pattern_signal = self.baseline_noise
        self.last_phase = BreathPhase.INHALE
        self.last_phase_time = self._clock()
        self._current_cycle_start = None
        logger.info("Pattern analyzer reset")

    def export_data(self) -> dict[str, Any]:
        """Export histories and derived state as JSON-compatible values."""
        return {
            "cycle_history": [c.model_dump(mode="json") for c in self.cycle_history],
            "phase_transitions": [
                t.model_dump(mode="json") for t in self.phase_transitions
            ],
            "pattern_metrics": self.metrics.model_dump(),
            "pattern_signal": self.pattern_signal,
            "total_cycles": self.total_cycles,
            "timestamp": self._clock(),
        }

    def import_data(self, data: dict[str, Any]) -> None:
        """
        Restore state previously produced by :meth:`export_data`.

        Missing keys leave the corresponding state unchanged.
        """
        if "cycle_history" in data:
            self.cycle_history.clear()
            self.cycle_history.extend(
                BreathCycle.model_validate(c) for c in data["cycle_history"]
            )
        if "phase_transitions" in data:
            self.phase_transitions.clear()
            self.phase_transitions.extend(
                PhaseTransition.model_validate(t) for t in data["phase_transitions"]
            )
            if self.phase_transitions:
                self.last_phase = self.phase_transitions[-1].to_phase
                self.last_phase_time = self.phase_transitions[-1].timestamp
        if "pattern_metrics" in data:
            self.metrics = PatternMetrics.model_validate(data["pattern_metrics"])
        if "pattern_signal" in data:
            self.pattern_signal = float(data["pattern_signal"])
        if "total_cycles" in data:
            self.total_cycles = int(data["total_cycles"])
        else:
            self.total_cycles = max(self.total_cycles, len(self.cycle_history))
