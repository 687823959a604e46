"""
Synthetic breathing spectra for bootstrapping the phase classifier.

Inhale frames decay steeply with frequency and carry narrow harmonic bumps
(air rushing in); exhale frames decay more slowly and carry broader turbulent
content across a wider band.
"""

import logging

import numpy as np

from breathflow.constants import CLASS_LABELS, BreathPhase
from breathflow.constants import ClassifierConstants as CC
from breathflow.constants import SyntheticSpectrumConstants as SSC

logger = logging.getLogger(__name__)

__all__ = ["generate_synthetic_spectrum", "generate_training_data"]


def generate_synthetic_spectrum(
    phase: BreathPhase,
    rng: np.random.Generator,
    length: int = CC.INPUT_LENGTH,
) -> np.ndarray:
    """
    Generate one synthetic feature vector for a breathing phase.

    Args:
        phase: INHALE or EXHALE
        rng: Random generator
        length: Number of bins

    Returns:
        float32 array of ``length`` values
    """
    bins = np.arange(length)

    if phase == BreathPhase.INHALE:
        base = SSC.INHALE_BASE_MIN + rng.random(length) * SSC.INHALE_BASE_SPREAD
        spectrum = base * np.exp(-bins / SSC.INHALE_DECAY)

        start, stop, step = SSC.INHALE_HARMONIC_BINS
        harmonic = np.arange(start, min(stop, length), step)
        spectrum[harmonic] += rng.random(len(harmonic)) * SSC.INHALE_HARMONIC_GAIN

        lo, hi = SSC.INHALE_NOISE_BAND
        band = slice(lo, min(hi, length))
        spectrum[band] += rng.random(len(bins[band])) * SSC.INHALE_NOISE_GAIN

    elif phase == BreathPhase.EXHALE:
        base = SSC.EXHALE_BASE_MIN + rng.random(length) * SSC.EXHALE_BASE_SPREAD
        spectrum = base * np.exp(-bins / SSC.EXHALE_DECAY)

        start, stop, step = SSC.EXHALE_TURBULENCE_BINS
        turbulent = np.arange(start, min(stop, length), step)
        spectrum[turbulent] += rng.random(len(turbulent)) * SSC.EXHALE_TURBULENCE_GAIN

        lo, hi = SSC.EXHALE_NOISE_BAND
        band = slice(lo, min(hi, length))
        spectrum[band] += rng.random(len(bins[band])) * SSC.EXHALE_NOISE_GAIN

    else:
        raise ValueError(f"No synthetic spectrum for phase {phase!r}")

    return spectrum.astype(np.float32)


def generate_training_data(
    num_samples: int,
    rng: np.random.Generator | None = None,
    length: int = CC.INPUT_LENGTH,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Build a balanced, shuffled synthetic dataset.

    Each class gets ``num_samples // 2`` samples; any remainder is assigned to
    random classes. The combined set is permuted so no class ordering
    survives into training.

    Args:
        num_samples: Total number of samples
        rng: Random generator (a fresh unseeded one if omitted)
        length: Feature vector length

    Returns:
        Tuple of (features with shape (n, length), integer labels with shape (n,))
    """
    if num_samples < 2:
        raise ValueError(f"num_samples must be at least 2 (got {num_samples})")

    rng = rng or np.random.default_rng()
    samples_per_class = num_samples // 2

    labels = [index for index in range(len(CLASS_LABELS)) for _ in range(samples_per_class)]
    remaining = num_samples - samples_per_class * len(CLASS_LABELS)
    labels.extend(int(c) for c in rng.integers(0, len(CLASS_LABELS), size=remaining))

    features = np.stack(
        [generate_synthetic_spectrum(CLASS_LABELS[label], rng, length) for label in labels]
    )
    targets = np.asarray(labels, dtype=np.int64)

    order = rng.permutation(len(targets))

    logger.info(
        f"Generated balanced training data: {samples_per_class} samples per class "
        f"({len(targets)} total)"
    )
    return features[order], targets[order]
