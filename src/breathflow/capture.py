"""
Spectrum sources feeding the breathing pipeline.

:class:`SounddeviceSpectrumSource` turns microphone input into byte-scaled
magnitude spectra the way a browser ``AnalyserNode`` does (windowed FFT,
temporal smoothing, decibel range mapped onto 0..255).
:class:`SyntheticBreathSource` emits alternating synthetic inhale/exhale
spectra for demos and tests.
"""

import logging
import threading
import time

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import numpy as np

from scipy import signal

from breathflow.constants import BreathPhase
from breathflow.constants import CaptureConstants as CAP
from breathflow.constants import FeatureExtractionConstants as FEC
from breathflow.errors import AcquisitionError
from breathflow.ml.synthetic_data import generate_synthetic_spectrum

logger = logging.getLogger(__name__)

__all__ = ["SounddeviceSpectrumSource", "SpectrumSource", "SyntheticBreathSource"]


@runtime_checkable
class SpectrumSource(Protocol):
    """Anything that can deliver magnitude spectra at a steady frame rate."""

    bin_count: int
    max_magnitude: float

    def open(self) -> None: ...

    def read_spectrum(self) -> np.ndarray | None: ...

    def close(self) -> None: ...


class SounddeviceSpectrumSource:
    """
    Microphone spectrum source backed by a ``sounddevice.InputStream``.

    The PortAudio callback only appends samples to a rolling buffer; the FFT
    runs on the caller's thread in :meth:`read_spectrum`.

    Args:
        sample_rate: Capture rate in Hz
        fft_size: FFT length (yields ``fft_size // 2`` bins)
        device: sounddevice device name or index (system default if None)
        smoothing: Temporal smoothing constant between frames (0..1)
        min_decibels: Level mapped to magnitude 0
        max_decibels: Level mapped to magnitude 255
    """

    def __init__(
        self,
        sample_rate: int = CAP.SAMPLE_RATE,
        fft_size: int = CAP.FFT_SIZE,
        device: str | int | None = None,
        smoothing: float = CAP.SMOOTHING_TIME_CONSTANT,
        min_decibels: float = CAP.MIN_DECIBELS,
        max_decibels: float = CAP.MAX_DECIBELS,
    ):
        if min_decibels >= max_decibels:
            raise ValueError("min_decibels must be below max_decibels")

        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.device = device
        self.smoothing = smoothing
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels

        self.bin_count = fft_size // 2
        self.max_magnitude = FEC.MAX_MAGNITUDE

        self._window = signal.get_window("hann", fft_size).astype(np.float32)
        self._lock = threading.Lock()
        self._samples = np.zeros(0, dtype=np.float32)
        self._smoothed = np.zeros(self.bin_count, dtype=np.float64)
        self._stream: Any = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.warning(f"Audio callback status: {status}")

        block = np.asarray(indata[:, 0], dtype=np.float32)
        with self._lock:
            self._samples = np.concatenate([self._samples, block])[-self.fft_size :]

    def open(self) -> None:
        """
        Start capturing from the input device.

        Raises:
            AcquisitionError: If the audio backend or device is unavailable
        """
        if self._stream is not None:
            return

        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise AcquisitionError(f"Audio backend unavailable: {e}") from e

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                device=self.device,
                callback=self._audio_callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise AcquisitionError(f"Microphone access failed: {e}") from e

        self._stream = stream
        logger.info(
            f"Audio stream started: {self.device or 'system default'} @ {self.sample_rate}Hz"
        )

    def spectrum_from_samples(self, samples: np.ndarray) -> np.ndarray:
        """Byte-scaled magnitude spectrum of one ``fft_size`` block."""
        windowed = samples[-self.fft_size :] * self._window
        magnitude = np.abs(np.fft.rfft(windowed))[: self.bin_count] / self.fft_size

        self._smoothed = self.smoothing * self._smoothed + (1 - self.smoothing) * magnitude
        decibels = 20 * np.log10(np.maximum(self._smoothed, 1e-12))

        scaled = (decibels - self.min_decibels) / (self.max_decibels - self.min_decibels)
        return np.clip(scaled * self.max_magnitude, 0, self.max_magnitude).astype(np.float32)

    def read_spectrum(self) -> np.ndarray | None:
        """Latest spectrum, or None until a full FFT block has been captured."""
        with self._lock:
            samples = self._samples.copy()

        if len(samples) < self.fft_size:
            return None
        return self.spectrum_from_samples(samples)

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return

        stream.stop()
        stream.close()
        logger.info("Audio stream closed")


class SyntheticBreathSource:
    """
    Synthetic source alternating inhale and exhale spectra.

    The lower half of each spectrum is a synthetic training-style frame scaled
    to byte range; the upper half is faint noise.

    Args:
        phase_seconds: Duration of each inhale or exhale
        bin_count: Number of bins per spectrum
        seed: Random seed
        clock: Time source used by :meth:`read_spectrum`
    """

    def __init__(
        self,
        phase_seconds: float = 1.4,
        bin_count: int = CAP.FFT_SIZE // 2,
        seed: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if phase_seconds <= 0:
            raise ValueError("phase_seconds must be positive")

        self.phase_seconds = phase_seconds
        self.bin_count = bin_count
        self.max_magnitude = FEC.MAX_MAGNITUDE
        self._rng = np.random.default_rng(seed)
        self._clock = clock
        self._started_at: float | None = None

    def phase_at(self, elapsed: float) -> BreathPhase:
        if int(elapsed // self.phase_seconds) % 2 == 0:
            return BreathPhase.INHALE
        return BreathPhase.EXHALE

    def spectrum_at(self, elapsed: float) -> np.ndarray:
        """Spectrum for the phase active ``elapsed`` seconds into the session."""
        low_bins = max(2, int(self.bin_count * FEC.LOW_BAND_FRACTION))
        spectrum = self._rng.random(self.bin_count).astype(np.float32) * 0.02

        low = generate_synthetic_spectrum(self.phase_at(elapsed), self._rng, low_bins)
        spectrum[:low_bins] = np.clip(low, 0, 1)
        return spectrum * self.max_magnitude

    def open(self) -> None:
        self._started_at = self._clock()

    def read_spectrum(self) -> np.ndarray | None:
        if self._started_at is None:
            return None
        return self.spectrum_at(self._clock() - self._started_at)

    def close(self) -> None:
        self._started_at = None
