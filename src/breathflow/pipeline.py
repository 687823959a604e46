"""
Real-time breathing pipeline.

One frame-tick thread pulls spectra from a :class:`SpectrumSource` and runs
each frame through feature extraction, phase classification and pattern
analysis in capture order, publishing an :class:`AnalysisSnapshot` that UI
code can poll without blocking.
"""

import logging
import threading
import time

from collections.abc import Callable, Sequence

import numpy as np

from breathflow.analysis.shared.feature_extractor import SpectrumFeatureExtractor
from breathflow.analysis.shared.pattern_analyzer import BreathingPatternAnalyzer
from breathflow.analysis.shared.types import AnalysisSnapshot, PatternAnalysis
from breathflow.capture import SpectrumSource
from breathflow.constants import BreathPhase, PipelineStatus
from breathflow.constants import CaptureConstants as CAP
from breathflow.errors import AcquisitionError, ConfigurationError
from breathflow.ml.classifier import PhaseClassifier
from breathflow.ml.lifecycle import ModelLifecycleManager

logger = logging.getLogger(__name__)

__all__ = ["BreathPipeline"]

STOP_TIMEOUT = 2.0
MAX_READ_FAILURES = 5


class BreathPipeline:
    """
    Drives spectrum frames through the breathing analysis chain.

    Per frame: raw intensity, features, prediction, pattern analysis, publish.
    A malformed frame or a failed inference yields a degraded snapshot
    (``phase=unknown``, ``confidence=0``) and leaves the analyzer untouched.
    A :class:`ConfigurationError` from the classifier is a programming error:
    :meth:`process_frame` lets it propagate and the tick thread stops with
    ``status == failed``.

    A spectrum read that raises also publishes a degraded snapshot and the
    tick continues. An :class:`AcquisitionError` from the source, or
    ``MAX_READ_FAILURES`` consecutive failed reads, stop the tick with
    ``status == stopped`` and the reason in :attr:`last_error`.

    Args:
        source: Spectrum source (opened by :meth:`start`)
        classifier: Shared phase classifier
        lifecycle: Lifecycle manager owning the classifier's model
        analyzer: Pattern analyzer (a new one sharing ``clock`` if omitted)
        extractor: Feature extractor (defaults match the source's magnitude)
        frame_rate: Frame ticks per second
        clock: Time source for frame timestamps

    Example:
        >>> pipeline = BreathPipeline(SounddeviceSpectrumSource(), classifier, lifecycle)
        >>> lifecycle.initialize()
        >>> pipeline.start()
        >>> pipeline.get_snapshot().pattern_signal
        0.05
    """

    def __init__(
        self,
        source: SpectrumSource,
        classifier: PhaseClassifier,
        lifecycle: ModelLifecycleManager,
        analyzer: BreathingPatternAnalyzer | None = None,
        extractor: SpectrumFeatureExtractor | None = None,
        frame_rate: float = CAP.FRAME_RATE,
        clock: Callable[[], float] = time.monotonic,
    ):
        if frame_rate <= 0:
            raise ValueError(f"frame_rate must be positive (got {frame_rate})")

        self.source = source
        self.classifier = classifier
        self.lifecycle = lifecycle
        self.analyzer = analyzer or BreathingPatternAnalyzer(clock=clock)
        self.extractor = extractor or SpectrumFeatureExtractor(
            max_magnitude=source.max_magnitude
        )
        self.frame_rate = frame_rate
        self._clock = clock

        self._control_lock = threading.Lock()
        self._snapshot_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self._status = PipelineStatus.STOPPED
        self._last_error: str | None = None
        self._intensity = 0.0
        self._frames_processed = 0
        self._frames_degraded = 0
        self._snapshot = self._snapshot_from(
            self.analyzer.get_current_analysis(), BreathPhase.UNKNOWN, 0.0, None, None
        )

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def last_error(self) -> str | None:
        """Latest start-up, acquisition or fatal frame error for display."""
        return self._last_error

    @property
    def is_running(self) -> bool:
        return self._status == PipelineStatus.RUNNING

    @property
    def frames_processed(self) -> int:
        return self._frames_processed

    @property
    def frames_degraded(self) -> int:
        return self._frames_degraded

    def get_intensity(self) -> float:
        """Last raw low-band energy reading in [0, 1]."""
        return self._intensity

    def get_snapshot(self) -> AnalysisSnapshot:
        """Most recently published snapshot."""
        with self._snapshot_lock:
            return self._snapshot

    def force_retrain(self, background: bool = True) -> threading.Thread | None:
        """Discard the stored model and retrain; capture keeps running."""
        logger.info("Force retrain requested")
        return self.lifecycle.force_retrain(background=background)

    def start(self) -> bool:
        """
        Open the source and start the frame tick.

        Returns:
            True if the pipeline is running afterwards. On failure the reason
            is available from :attr:`last_error` and the pipeline stays
            stopped, so ``start`` can simply be retried.
        """
        with self._control_lock:
            if self._status == PipelineStatus.RUNNING:
                return True

            if not self.lifecycle.is_ready:
                self._last_error = f"Model not ready ({self.lifecycle.describe()})"
                logger.warning(f"Cannot start pipeline: {self._last_error}")
                return False

            try:
                self.source.open()
            except AcquisitionError as e:
                self._last_error = str(e)
                self._status = PipelineStatus.STOPPED
                logger.error(f"Audio acquisition failed: {e}")
                return False

            self._last_error = None
            self._stop_event.clear()
            self._status = PipelineStatus.RUNNING
            self._thread = threading.Thread(
                target=self._run, name="breathflow-frame-tick", daemon=True
            )
            self._thread.start()
            logger.info(f"Pipeline started at {self.frame_rate:g} fps")
            return True

    def stop(self) -> None:
        """Halt the frame tick and close the source; analyzer state is kept."""
        with self._control_lock:
            thread, self._thread = self._thread, None
            self._stop_event.set()

            if thread is not None and thread is not threading.current_thread():
                thread.join(STOP_TIMEOUT)
                if thread.is_alive():
                    logger.warning("Frame tick did not stop within timeout")

            if thread is None and self._status != PipelineStatus.RUNNING:
                return

            self.source.close()
            if self._status == PipelineStatus.RUNNING:
                self._status = PipelineStatus.STOPPED
            logger.info("Pipeline stopped")

    # ------------------------------------------------------------------
    # Frame processing
    # ------------------------------------------------------------------

    def process_frame(
        self, spectrum: Sequence[float] | np.ndarray, timestamp: float | None = None
    ) -> AnalysisSnapshot:
        """
        Run one spectrum through the chain and publish the result.

        Args:
            spectrum: Magnitudes for one frame
            timestamp: Capture time in seconds (defaults to the clock)

        Returns:
            The published snapshot

        Raises:
            ConfigurationError: If the classifier is misconfigured
        """
        now = self._clock() if timestamp is None else timestamp

        try:
            intensity = self.extractor.raw_intensity(spectrum)
            features = self.extractor.extract(spectrum)
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed frame: {e}")
            return self._publish_degraded(now, f"Malformed frame: {e}")

        self._intensity = intensity

        try:
            prediction = self.classifier.predict(features)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Inference failed, emitting degraded frame: {e}")
            return self._publish_degraded(now, f"Inference failed: {e}")

        analysis = self.analyzer.process_prediction(prediction, now)
        snapshot = self._snapshot_from(
            analysis, prediction.phase, prediction.confidence, now, None
        )
        self._frames_processed += 1
        return self._publish(snapshot)

    def _snapshot_from(
        self,
        analysis: PatternAnalysis,
        phase: BreathPhase,
        confidence: float,
        timestamp: float | None,
        error: str | None,
    ) -> AnalysisSnapshot:
        return AnalysisSnapshot(
            phase=phase,
            confidence=confidence,
            model_state=self.lifecycle.state,
            pattern_signal=analysis.pattern_signal,
            is_pattern_detected=analysis.is_pattern_detected,
            pattern_quality=analysis.pattern_quality,
            total_cycles=analysis.total_cycles,
            metrics=analysis.metrics,
            raw_intensity=self._intensity,
            timestamp=timestamp,
            error=error,
        )

    def _publish_degraded(self, timestamp: float, error: str) -> AnalysisSnapshot:
        self._frames_degraded += 1
        snapshot = self._snapshot_from(
            self.analyzer.get_current_analysis(), BreathPhase.UNKNOWN, 0.0, timestamp, error
        )
        return self._publish(snapshot)

    def _publish(self, snapshot: AnalysisSnapshot) -> AnalysisSnapshot:
        with self._snapshot_lock:
            self._snapshot = snapshot
        return snapshot

    def _halt(self, status: PipelineStatus, error: str) -> None:
        try:
            self.source.close()
        except Exception:
            logger.exception("Closing the spectrum source failed")
        self._last_error = error
        self._status = status

    def _run(self) -> None:
        interval = 1.0 / self.frame_rate
        read_failures = 0

        while not self._stop_event.is_set():
            started = time.monotonic()

            try:
                spectrum = self.source.read_spectrum()
            except AcquisitionError as e:
                logger.error(f"Audio acquisition failed: {e}")
                self._halt(PipelineStatus.STOPPED, str(e))
                return
            except Exception as e:
                read_failures += 1
                logger.warning(f"Spectrum read failed ({read_failures}): {e}")
                self._publish_degraded(self._clock(), f"Spectrum read failed: {e}")
                if read_failures >= MAX_READ_FAILURES:
                    logger.error(f"Pipeline stopped after {read_failures} failed reads")
                    self._halt(PipelineStatus.STOPPED, f"Spectrum read failed: {e}")
                    return
                spectrum = None
            else:
                read_failures = 0

            if spectrum is not None:
                try:
                    self.process_frame(spectrum)
                except ConfigurationError as e:
                    logger.error(f"Pipeline halted by configuration error: {e}")
                    self._halt(PipelineStatus.FAILED, str(e))
                    return
                except Exception as e:
                    logger.exception("Frame processing failed")
                    self._publish_degraded(self._clock(), f"Frame processing failed: {e}")

            self._stop_event.wait(max(0.0, interval - (time.monotonic() - started)))
