"""Shared analysis type definitions."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from breathflow.constants import BreathPhase, ModelState, PatternQuality

# ============================================================================
# Classifier Output Types
# ============================================================================


class PhaseProbabilities(BaseModel):
    """Class probabilities for the two breathing phases."""

    model_config = ConfigDict(frozen=True)

    inhale: float = Field(ge=0, le=1, description="Probability of inhale")
    exhale: float = Field(ge=0, le=1, description="Probability of exhale")

    @model_validator(mode="after")
    def _check_sum(self) -> "PhaseProbabilities":
        if abs(self.inhale + self.exhale - 1.0) > 1e-3:
            raise ValueError(
                f"Probabilities must sum to 1 (got {self.inhale + self.exhale:.4f})"
            )
        return self


class Prediction(BaseModel):
    """
    Classifier output for a single frame.

    Attributes:
        phase: Predicted breathing phase
        confidence: Probability of the predicted phase (0-1)
        probabilities: Per-class probabilities summing to 1
        breathing_score: Blend of confidence and class separation (0-1)
    """

    model_config = ConfigDict(frozen=True)

    phase: BreathPhase = Field(description="Predicted breathing phase")
    confidence: float = Field(ge=0, le=1, description="Predicted class probability")
    probabilities: PhaseProbabilities = Field(description="Per-class probabilities")
    breathing_score: float = Field(ge=0, le=1, description="Breathing clarity score")


# ============================================================================
# Pattern Analysis Types
# ============================================================================


class PhaseTransition(BaseModel):
    """
    Recorded change of breathing phase.

    Attributes:
        from_phase: Phase being left
        to_phase: Phase being entered
        timestamp: Time of the change (seconds)
        duration: How long the previous phase lasted (seconds)
    """

    model_config = ConfigDict(frozen=True)

    from_phase: BreathPhase
    to_phase: BreathPhase
    timestamp: float = Field(description="Transition time (seconds)")
    duration: float = Field(ge=0, description="Duration of previous phase (seconds)")


class BreathCycle(BaseModel):
    """
    One complete inhale/exhale round-trip.

    Attributes:
        start_time: Timestamp of the opening transition (seconds)
        end_time: Timestamp of the closing transition (seconds)
        duration: end_time - start_time (seconds)
        transitions: The two alternating transitions forming the cycle
    """

    model_config = ConfigDict(frozen=True)

    start_time: float
    end_time: float
    duration: float = Field(ge=0)
    transitions: tuple[PhaseTransition, PhaseTransition]


class PatternMetrics(BaseModel):
    """Rhythm metrics derived from cycle and transition histories."""

    model_config = ConfigDict(frozen=True)

    cycle_consistency: float = Field(default=0.0, ge=0, le=1)
    rhythm_strength: float = Field(default=0.0, ge=0, le=1)
    pattern_stability: float = Field(default=0.0, ge=0, le=1)
    overall_score: float = Field(default=0.0, ge=0, le=1)


class PatternAnalysis(BaseModel):
    """
    Result of processing one prediction through the pattern analyzer.

    Attributes:
        metrics: Current pattern metrics
        pattern_signal: Smoothed control signal (baseline..1)
        is_pattern_detected: Whether overall score indicates a rhythm
        pattern_quality: Discretized quality label
        total_cycles: Monotonic count of detected cycles
        last_cycle_duration: Duration of the newest cycle (seconds)
        average_cycle_duration: Mean duration over the cycle history (seconds)
        recent_transitions: Newest transitions (up to 5)
        recent_cycles: Newest cycles (up to 3)
        current_cycle_active: Whether a cycle is currently being tracked
    """

    model_config = ConfigDict(frozen=True)

    metrics: PatternMetrics
    pattern_signal: float = Field(ge=0, le=1)
    is_pattern_detected: bool
    pattern_quality: PatternQuality
    total_cycles: int = Field(ge=0)
    last_cycle_duration: float | None = None
    average_cycle_duration: float | None = None
    recent_transitions: list[PhaseTransition] = Field(default_factory=list)
    recent_cycles: list[BreathCycle] = Field(default_factory=list)
    current_cycle_active: bool = False


class AnalysisSnapshot(BaseModel):
    """
    Latest published pipeline output.

    This is the record external consumers (visuals, audio) poll each render
    frame.
    """

    model_config = ConfigDict(frozen=True)

    phase: BreathPhase = Field(description="Latest phase (unknown on bad frames)")
    confidence: float = Field(ge=0, le=1)
    model_state: ModelState
    pattern_signal: float = Field(ge=0, le=1)
    is_pattern_detected: bool
    pattern_quality: PatternQuality
    total_cycles: int = Field(ge=0)
    metrics: PatternMetrics
    raw_intensity: float = Field(default=0.0, ge=0, le=1)
    timestamp: float | None = None
    error: str | None = Field(default=None, description="Per-frame error, if any")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain JSON-compatible values."""
        return self.model_dump(mode="json")
