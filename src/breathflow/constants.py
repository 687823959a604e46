"""
Constants and enumerations for breath phase tracking.

Thresholds are expressed in seconds and unit-interval fractions. The synthetic
spectrum constants are tunable shape parameters (steep vs. shallow decay,
narrow vs. broad harmonic content) rather than load-bearing values.
"""

from enum import Enum
from pathlib import Path

# ============================================================================
# Phases and States
# ============================================================================


class BreathPhase(str, Enum):
    """Breathing phase emitted by the classifier."""

    INHALE = "inhale"
    EXHALE = "exhale"
    UNKNOWN = "unknown"  # Degraded frames only, never a classifier output


CLASS_LABELS: tuple[BreathPhase, BreathPhase] = (BreathPhase.INHALE, BreathPhase.EXHALE)


class ModelState(str, Enum):
    """Lifecycle state of the phase classifier."""

    LOADING = "loading"
    TRAINING = "training"
    READY = "ready"
    ERROR = "error"


class PatternQuality(str, Enum):
    """Discretized label for the overall pattern score."""

    NONE = "No Pattern"
    WEAK = "Weak"
    MODERATE = "Moderate"
    STRONG = "Strong"
    EXCELLENT = "Excellent"


class PipelineStatus(str, Enum):
    """Run status of the frame pipeline."""

    STOPPED = "stopped"
    RUNNING = "running"
    FAILED = "failed"


# ============================================================================
# Analysis Algorithm Constants
# ============================================================================


class FeatureExtractionConstants:
    """Constants for spectrum feature extraction (feature_extractor.py)."""

    FEATURE_LENGTH = 128
    MAX_MAGNITUDE = 255.0
    LOW_BAND_FRACTION = 0.5  # Breathing energy sits in the low half
    INTENSITY_BAND_FRACTION = 0.1
    MIN_SPECTRUM_LENGTH = 2


class PatternAnalysisConstants:
    """Constants for breathing pattern analysis (pattern_analyzer.py)."""

    CONFIDENCE_FLOOR = 0.4
    MIN_PHASE_DURATION = 0.3
    MIN_CYCLE_DURATION = 1.0
    MAX_CYCLE_DURATION = 20.0

    CYCLE_HISTORY_SIZE = 50
    TRANSITION_HISTORY_SIZE = 50

    RHYTHM_TRANSITION_WINDOW = 20
    RHYTHM_MIN_INTERVALS = 3
    STABILITY_WINDOW = 5

    CONSISTENCY_CV_WEIGHT = 2.0
    RHYTHM_CV_WEIGHT = 1.5

    CONSISTENCY_WEIGHT = 0.4
    RHYTHM_WEIGHT = 0.35
    STABILITY_WEIGHT = 0.25

    # Two-cycle "pattern emerging" floor
    SEED_CONSISTENCY = 0.5
    SEED_RHYTHM = 0.4
    SEED_STABILITY = 0.3
    SEED_OVERALL = 0.4

    BASELINE_NOISE = 0.05
    SMOOTHING_FACTOR = 0.1
    SIGNAL_ACTIVATION_SCORE = 0.2
    SIGNAL_CURVE_EXPONENT = 0.8

    PATTERN_DETECTED_SCORE = 0.3

    QUALITY_WEAK = 0.2
    QUALITY_MODERATE = 0.4
    QUALITY_STRONG = 0.6
    QUALITY_EXCELLENT = 0.8

    RECENT_TRANSITIONS = 5
    RECENT_CYCLES = 3
    VISUALIZATION_WINDOW = 30.0


class ClassifierConstants:
    """Constants for the phase classifier network (network.py, classifier.py)."""

    INPUT_LENGTH = 128
    NUM_CLASSES = 2

    CONV_FILTERS = (16, 32, 64)
    CONV_KERNELS = (7, 5, 3)
    POOL_SIZE = 2
    POOLED_BLOCKS = 2
    DENSE_UNITS = (32, 16)
    DROPOUT_RATES = (0.3, 0.2)

    LEARNING_RATE = 0.001
    BATCH_SIZE = 32
    DATASET_SIZE = 2000
    EPOCHS = 15
    VALIDATION_SPLIT = 0.2

    SCORE_CONFIDENCE_WEIGHT = 0.7
    SCORE_CLARITY_WEIGHT = 0.3


class SyntheticSpectrumConstants:
    """Shape parameters for the synthetic training spectra (synthetic_data.py)."""

    INHALE_BASE_MIN = 0.35
    INHALE_BASE_SPREAD = 0.25
    INHALE_DECAY = 25.0
    INHALE_HARMONIC_BINS = (5, 40, 8)  # start, stop, step
    INHALE_HARMONIC_GAIN = 0.2
    INHALE_NOISE_BAND = (60, 90)
    INHALE_NOISE_GAIN = 0.08

    EXHALE_BASE_MIN = 0.28
    EXHALE_BASE_SPREAD = 0.3
    EXHALE_DECAY = 45.0
    EXHALE_TURBULENCE_BINS = (15, 85, 6)
    EXHALE_TURBULENCE_GAIN = 0.12
    EXHALE_NOISE_BAND = (40, 100)
    EXHALE_NOISE_GAIN = 0.06


class LifecycleConstants:
    """Constants for model lifecycle management (lifecycle.py)."""

    CONFLICT_GRACE_PERIOD = 3.0
    DEFAULT_MODEL_NAME = "breathing-model"

    TOPOLOGY_KEY = "model_topology"
    WEIGHTS_KEY = "weight_data"
    METADATA_KEY = "model_metadata"

    FALLBACK_WARNING = (
        "Using fallback model. Predictions may be inaccurate until proper "
        "training completes."
    )


class CaptureConstants:
    """Constants for microphone spectrum capture (capture.py)."""

    SAMPLE_RATE = 44100
    FFT_SIZE = 512  # 256 frequency bins
    SMOOTHING_TIME_CONSTANT = 0.3
    MIN_DECIBELS = -100.0
    MAX_DECIBELS = -30.0
    FRAME_RATE = 30.0


# ============================================================================
# Default Settings
# ============================================================================

DEFAULT_HOME = Path.home() / ".breathflow"

DEFAULT_DATABASE_PATH = str(DEFAULT_HOME / "models.db")

# Logging configuration
DEFAULT_LOG_DIR = DEFAULT_HOME / "logs"
DEFAULT_LOG_FILE = "breathflow.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5
