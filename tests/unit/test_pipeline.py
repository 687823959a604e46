"""
Unit tests for the real-time breathing pipeline.

Uses the scripted fake classifier so frame handling can be checked without a
network; the lifecycle manager is real and initialized from a load hit.
"""

import threading
import time

import numpy as np
import pytest

from breathflow.analysis.shared.pattern_analyzer import BreathingPatternAnalyzer
from breathflow.capture import SyntheticBreathSource
from breathflow.constants import BreathPhase, ModelState, PipelineStatus
from breathflow.errors import AcquisitionError, ConfigurationError
from breathflow.ml.lifecycle import ModelLifecycleManager
from breathflow.pipeline import BreathPipeline
from tests.helpers.fakes import FakeClassifier
from tests.helpers.synthetic_data import alternating_predictions
from tests.helpers.validation_helpers import assert_snapshot_degraded

SPECTRUM = np.full(256, 128.0, dtype=np.float32)


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def ready_lifecycle(classifier):
    lifecycle = ModelLifecycleManager(classifier, sleep=lambda seconds: None)
    lifecycle.initialize()
    return lifecycle


def make_pipeline(classifier=None, source=None, **kwargs):
    classifier = classifier or FakeClassifier(load_results=[True])
    lifecycle = ready_lifecycle(classifier)
    source = source or SyntheticBreathSource(seed=0)
    kwargs.setdefault("analyzer", BreathingPatternAnalyzer(clock=lambda: 0.0))
    return BreathPipeline(source, classifier, lifecycle, **kwargs)


class FailingSource:
    """Source whose device cannot be opened."""

    bin_count = 256
    max_magnitude = 255.0

    def __init__(self):
        self.closed = 0

    def open(self):
        raise AcquisitionError("Microphone access failed: permission denied")

    def read_spectrum(self):
        return None

    def close(self):
        self.closed += 1


class ScriptedSource:
    """Source that replays spectra and read errors, then keeps returning SPECTRUM."""

    bin_count = 256
    max_magnitude = 255.0

    def __init__(self, script=(), repeat_error=None):
        self.script = list(script)
        self.repeat_error = repeat_error
        self.reads = 0
        self.closed = 0

    def open(self):
        pass

    def read_spectrum(self):
        self.reads += 1
        item = self.script.pop(0) if self.script else self.repeat_error or SPECTRUM
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed += 1


class FlakyAnalyzer(BreathingPatternAnalyzer):
    """Analyzer whose first update raises."""

    def __init__(self):
        super().__init__(clock=lambda: 0.0)
        self.failed = False

    def process_prediction(self, prediction, timestamp=None):
        if not self.failed:
            self.failed = True
            raise RuntimeError("analysis state corrupted")
        return super().process_prediction(prediction, timestamp)


class TestProcessFrame:
    """Test single-frame processing."""

    def test_valid_frame_publishes_prediction(self):
        pipeline = make_pipeline()

        snapshot = pipeline.process_frame(SPECTRUM, timestamp=1.0)

        assert snapshot.phase == BreathPhase.INHALE
        assert snapshot.confidence == pytest.approx(0.9)
        assert snapshot.model_state == ModelState.READY
        assert snapshot.timestamp == 1.0
        assert snapshot.error is None
        assert pipeline.get_snapshot() == snapshot
        assert pipeline.frames_processed == 1

    def test_classifier_receives_feature_vector(self):
        classifier = FakeClassifier(load_results=[True])
        pipeline = make_pipeline(classifier)

        pipeline.process_frame(SPECTRUM, timestamp=0.0)

        features = classifier.features_seen[0]
        assert features.shape == (128,)
        assert np.allclose(features, 128.0 / 255.0)

    def test_initial_snapshot_is_idle(self):
        pipeline = make_pipeline()

        snapshot = pipeline.get_snapshot()

        assert snapshot.phase == BreathPhase.UNKNOWN
        assert snapshot.total_cycles == 0
        assert snapshot.timestamp is None

    @pytest.mark.parametrize(
        "spectrum",
        [[], [1.0], [[1.0, 2.0], [3.0, 4.0]], ["loud", "quiet"]],
        ids=["empty", "single-bin", "two-dimensional", "non-numeric"],
    )
    def test_malformed_frame_is_degraded(self, spectrum):
        classifier = FakeClassifier(load_results=[True])
        pipeline = make_pipeline(classifier)

        snapshot = pipeline.process_frame(spectrum, timestamp=2.0)

        assert_snapshot_degraded(snapshot)
        assert "Malformed frame" in snapshot.error
        assert classifier.features_seen == []
        assert pipeline.frames_degraded == 1
        assert pipeline.frames_processed == 0

    def test_inference_failure_is_degraded_and_analyzer_untouched(self):
        classifier = FakeClassifier(
            load_results=[True], predictions=[RuntimeError("backend crashed")]
        )
        pipeline = make_pipeline(classifier)
        before = pipeline.analyzer.export_data()

        snapshot = pipeline.process_frame(SPECTRUM, timestamp=3.0)

        assert_snapshot_degraded(snapshot)
        assert "backend crashed" in snapshot.error
        assert pipeline.analyzer.export_data() == before

    def test_degraded_frame_keeps_pattern_state(self):
        stream = alternating_predictions(phases=12)
        predictions = [prediction for _, prediction in stream]
        classifier = FakeClassifier(load_results=[True], predictions=predictions)
        pipeline = make_pipeline(classifier)
        for timestamp, _ in stream:
            pipeline.process_frame(SPECTRUM, timestamp=timestamp)
        cycles = pipeline.get_snapshot().total_cycles

        snapshot = pipeline.process_frame([0.0], timestamp=stream[-1][0] + 0.04)

        assert cycles > 0
        assert snapshot.total_cycles == cycles

    def test_configuration_error_propagates(self):
        classifier = FakeClassifier(
            load_results=[True], predictions=[ConfigurationError("wrong input shape")]
        )
        pipeline = make_pipeline(classifier)

        with pytest.raises(ConfigurationError):
            pipeline.process_frame(SPECTRUM, timestamp=0.0)

    def test_intensity_tracks_valid_frames(self):
        pipeline = make_pipeline()

        pipeline.process_frame(np.full(256, 255.0), timestamp=0.0)
        assert pipeline.get_intensity() == pytest.approx(1.0)

        pipeline.process_frame([7.0], timestamp=0.04)
        assert pipeline.get_intensity() == pytest.approx(1.0)

        pipeline.process_frame(np.zeros(256), timestamp=0.08)
        assert pipeline.get_intensity() == 0.0

    def test_clock_used_without_timestamp(self):
        classifier = FakeClassifier(load_results=[True])
        lifecycle = ready_lifecycle(classifier)
        pipeline = BreathPipeline(
            SyntheticBreathSource(seed=0), classifier, lifecycle, clock=lambda: 42.0
        )

        assert pipeline.process_frame(SPECTRUM).timestamp == 42.0

    def test_invalid_frame_rate_rejected(self):
        with pytest.raises(ValueError):
            make_pipeline(frame_rate=0)


class TestStartStop:
    """Test the frame tick thread."""

    def test_start_requires_ready_model(self):
        classifier = FakeClassifier()
        lifecycle = ModelLifecycleManager(classifier, sleep=lambda seconds: None)
        pipeline = BreathPipeline(SyntheticBreathSource(seed=0), classifier, lifecycle)

        assert pipeline.start() is False
        assert "Model not ready" in pipeline.last_error
        assert pipeline.status == PipelineStatus.STOPPED

    def test_acquisition_error_reported(self):
        source = FailingSource()
        pipeline = make_pipeline(source=source)

        assert pipeline.start() is False
        assert "permission denied" in pipeline.last_error
        assert pipeline.status == PipelineStatus.STOPPED
        assert not pipeline.is_running

    def test_runs_frames_until_stopped(self):
        source = SyntheticBreathSource(seed=0)
        pipeline = make_pipeline(source=source, frame_rate=100)

        assert pipeline.start() is True
        try:
            assert pipeline.is_running
            assert wait_for(lambda: pipeline.frames_processed >= 3)
        finally:
            pipeline.stop()

        assert pipeline.status == PipelineStatus.STOPPED
        assert source.read_spectrum() is None
        processed = pipeline.frames_processed
        time.sleep(0.05)
        assert pipeline.frames_processed == processed

    def test_start_and_stop_are_idempotent(self):
        pipeline = make_pipeline(frame_rate=100)

        assert pipeline.start() is True
        assert pipeline.start() is True
        pipeline.stop()
        pipeline.stop()

        assert pipeline.status == PipelineStatus.STOPPED

    def test_stop_before_start_is_noop(self):
        pipeline = make_pipeline()

        pipeline.stop()

        assert pipeline.status == PipelineStatus.STOPPED

    def test_restart_after_stop(self):
        pipeline = make_pipeline(frame_rate=100)
        pipeline.start()
        pipeline.stop()

        assert pipeline.start() is True
        pipeline.stop()

    def test_configuration_error_fails_pipeline(self):
        classifier = FakeClassifier(
            load_results=[True], predictions=[ConfigurationError("wrong input shape")]
        )
        source = SyntheticBreathSource(seed=0)
        pipeline = make_pipeline(classifier, source=source, frame_rate=100)

        pipeline.start()

        assert wait_for(lambda: pipeline.status == PipelineStatus.FAILED)
        assert "wrong input shape" in pipeline.last_error
        assert source.read_spectrum() is None
        pipeline.stop()
        assert pipeline.status == PipelineStatus.FAILED

    def test_snapshot_readable_from_other_threads(self):
        pipeline = make_pipeline(frame_rate=100)
        pipeline.start()
        seen = []

        def reader():
            for _ in range(20):
                seen.append(pipeline.get_snapshot())
                time.sleep(0.005)

        thread = threading.Thread(target=reader)
        thread.start()
        thread.join(5)
        pipeline.stop()

        assert len(seen) == 20


class TestReadFailures:
    """Test the frame tick when the source or analyzer raises mid-run."""

    def test_single_read_error_is_degraded_and_tick_continues(self):
        source = ScriptedSource([SPECTRUM, SPECTRUM, RuntimeError("device hiccup")])
        pipeline = make_pipeline(source=source, frame_rate=100)

        pipeline.start()
        try:
            assert wait_for(lambda: pipeline.frames_processed >= 5)
            assert pipeline.is_running
            assert pipeline._thread.is_alive()
        finally:
            pipeline.stop()

        assert source.reads > 3
        assert pipeline.frames_degraded == 1
        assert pipeline.last_error is None

    def test_read_error_publishes_degraded_snapshot(self):
        source = ScriptedSource([RuntimeError("device hiccup")])
        pipeline = make_pipeline(source=source, frame_rate=100)
        published = []
        original = pipeline._publish

        def record(snapshot):
            published.append(snapshot)
            return original(snapshot)

        pipeline._publish = record
        pipeline.start()
        try:
            assert wait_for(lambda: pipeline.frames_processed >= 1)
        finally:
            pipeline.stop()

        assert_snapshot_degraded(published[0])
        assert "device hiccup" in published[0].error

    def test_repeated_read_errors_stop_pipeline(self):
        source = ScriptedSource(repeat_error=RuntimeError("device unplugged"))
        pipeline = make_pipeline(source=source, frame_rate=100)

        pipeline.start()

        assert wait_for(lambda: pipeline.status == PipelineStatus.STOPPED)
        assert "device unplugged" in pipeline.last_error
        assert source.closed >= 1
        assert wait_for(lambda: not pipeline._thread.is_alive())
        pipeline.stop()
        assert pipeline.status == PipelineStatus.STOPPED

    def test_acquisition_error_during_read_stops_pipeline(self):
        source = ScriptedSource([SPECTRUM, AcquisitionError("Audio stream lost")])
        pipeline = make_pipeline(source=source, frame_rate=100)

        pipeline.start()

        assert wait_for(lambda: pipeline.status == PipelineStatus.STOPPED)
        assert "Audio stream lost" in pipeline.last_error
        assert source.closed == 1
        assert source.reads == 2
        pipeline.stop()

    def test_analyzer_error_is_degraded_and_tick_continues(self):
        pipeline = make_pipeline(frame_rate=100, analyzer=FlakyAnalyzer())

        pipeline.start()
        try:
            assert wait_for(lambda: pipeline.frames_processed >= 3)
            assert pipeline.is_running
        finally:
            pipeline.stop()

        assert pipeline.frames_degraded == 1
        assert pipeline.status == PipelineStatus.STOPPED


class TestForceRetrain:
    """Test retraining requests routed through the pipeline."""

    def test_force_retrain_delegates_to_lifecycle(self):
        classifier = FakeClassifier(load_results=[True, False])
        pipeline = make_pipeline(classifier)

        pipeline.force_retrain(background=False)

        assert classifier.calls[-4:] == ["clear_persisted", "load", "train", "save"]
        assert pipeline.lifecycle.state == ModelState.READY
