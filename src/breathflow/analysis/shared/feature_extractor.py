"""
Spectrum feature extraction for breath phase classification.

Turns one frame of byte-scaled frequency magnitudes into the fixed-length,
normalized feature vector the phase classifier consumes. Breathing energy is
concentrated in the low part of the spectrum, so only the lower half of the
bins is kept and resampled onto the classifier's input grid.
"""

import logging

from collections.abc import Sequence

import numpy as np

from breathflow.constants import FeatureExtractionConstants as FEC
from breathflow.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ["SpectrumFeatureExtractor", "resize_spectrum"]


def resize_spectrum(values: np.ndarray, target_size: int) -> np.ndarray:
    """
    Resample a 1D spectrum to ``target_size`` points by linear interpolation.

    Target index ``i`` samples the fractional source position
    ``i * (len(values) - 1) / (target_size - 1)`` and blends the two
    bracketing source samples.

    Args:
        values: 1D array with at least 2 samples
        target_size: Number of output points (>= 2)

    Returns:
        float32 array of length ``target_size``

    Raises:
        ConfigurationError: If either length is below 2
    """
    source = np.asarray(values, dtype=np.float64)
    if source.ndim != 1 or len(source) < FEC.MIN_SPECTRUM_LENGTH:
        raise ConfigurationError(
            f"Spectrum must be 1D with at least {FEC.MIN_SPECTRUM_LENGTH} samples "
            f"(got shape {source.shape})"
        )
    if target_size < 2:
        raise ConfigurationError(f"Target size must be >= 2 (got {target_size})")

    if len(source) == target_size:
        return source.astype(np.float32)

    positions = np.arange(target_size) * ((len(source) - 1) / (target_size - 1))
    resized: np.ndarray = np.interp(positions, np.arange(len(source)), source)
    return resized.astype(np.float32)


class SpectrumFeatureExtractor:
    """
    Extracts classifier features from raw spectrum frames.

    Example:
        >>> extractor = SpectrumFeatureExtractor()
        >>> features = extractor.extract(byte_frequency_data)
        >>> features.shape
        (128,)
    """

    def __init__(
        self,
        feature_length: int = FEC.FEATURE_LENGTH,
        max_magnitude: float = FEC.MAX_MAGNITUDE,
        low_band_fraction: float = FEC.LOW_BAND_FRACTION,
    ):
        """
        Initialize the extractor.

        Args:
            feature_length: Length of the produced feature vector
            max_magnitude: Known maximum spectrum magnitude used for normalization
            low_band_fraction: Fraction of bins (from DC upward) that is kept
        """
        if max_magnitude <= 0:
            raise ConfigurationError(f"max_magnitude must be positive: {max_magnitude}")
        if not 0 < low_band_fraction <= 1:
            raise ConfigurationError(
                f"low_band_fraction must be in (0, 1]: {low_band_fraction}"
            )

        self.feature_length = feature_length
        self.max_magnitude = max_magnitude
        self.low_band_fraction = low_band_fraction

    def normalize(self, spectrum: Sequence[float] | np.ndarray) -> np.ndarray:
        """Scale magnitudes to [0, 1] by the known maximum."""
        values = np.asarray(spectrum, dtype=np.float64)
        if values.ndim != 1 or len(values) < FEC.MIN_SPECTRUM_LENGTH:
            raise ConfigurationError(
                f"Spectrum must be 1D with at least {FEC.MIN_SPECTRUM_LENGTH} bins "
                f"(got shape {values.shape})"
            )
        normalized: np.ndarray = np.clip(values / self.max_magnitude, 0.0, 1.0)
        return normalized

    def extract(self, spectrum: Sequence[float] | np.ndarray) -> np.ndarray:
        """
        Convert a spectrum frame into a feature vector.

        Args:
            spectrum: Per-bin magnitudes in [0, max_magnitude]

        Returns:
            Read-only float32 array of length ``feature_length`` in [0, 1]

        A one-bin low band (spectra of 2 or 3 bins) is repeated across the
        whole vector.

        Raises:
            ConfigurationError: If the spectrum has fewer than 2 bins
        """
        normalized = self.normalize(spectrum)

        band_length = max(1, int(np.floor(len(normalized) * self.low_band_fraction)))
        low_band = normalized[:band_length]

        if band_length == 1:
            features = np.full(self.feature_length, low_band[0], dtype=np.float32)
        else:
            features = resize_spectrum(low_band, self.feature_length)
        np.clip(features, 0.0, 1.0, out=features)
        features.flags.writeable = False
        return features

    def raw_intensity(self, spectrum: Sequence[float] | np.ndarray) -> float:
        """
        Average energy of the lowest bins, normalized to [0, 1].

        This is the cheap, model-free loudness reading consumers poll every
        render frame.
        """
        normalized = self.normalize(spectrum)
        band_length = max(1, int(np.floor(len(normalized) * FEC.INTENSITY_BAND_FRACTION)))
        return float(np.mean(normalized[:band_length]))
