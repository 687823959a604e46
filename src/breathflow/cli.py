"""
Command-line interface for breathflow.

Provides commands for training and inspecting the phase classifier, running
the live or simulated breathing pipeline, and database/config management.
"""

import logging
import os
import sys
import time

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Any

import click

from breathflow.analysis.shared.feature_extractor import SpectrumFeatureExtractor
from breathflow.analysis.shared.pattern_analyzer import BreathingPatternAnalyzer
from breathflow.analysis.shared.types import AnalysisSnapshot
from breathflow.capture import SounddeviceSpectrumSource, SyntheticBreathSource
from breathflow.config import (
    BreathFlowSettings,
    get_config_path,
    get_settings,
    load_config,
    parse_config_value,
    set_config_value,
    unset_config_value,
)
from breathflow.constants import ModelState
from breathflow.database.session import get_database_path, init_database
from breathflow.database.store import ModelStore
from breathflow.errors import ConfigurationError
from breathflow.logging_config import setup_logging
from breathflow.ml.classifier import PhaseClassifier, TrainingReport
from breathflow.ml.lifecycle import ModelLifecycleManager
from breathflow.pipeline import BreathPipeline

logger = logging.getLogger(__name__)

try:
    __version__ = get_version("breathflow")
except PackageNotFoundError:
    __version__ = "dev"


def open_classifier(db: str | None) -> tuple[BreathFlowSettings, PhaseClassifier]:
    """Initialize the store and return settings plus a classifier bound to it."""
    settings = get_settings()
    db_path = str(Path(db)) if db else settings.model.database
    init_database(db_path)
    return settings, PhaseClassifier(ModelStore(), settings.model.name)


def build_lifecycle(
    settings: BreathFlowSettings,
    classifier: PhaseClassifier,
    **training_overrides: Any,
) -> ModelLifecycleManager:
    overrides = {k: v for k, v in training_overrides.items() if v is not None}
    lifecycle = ModelLifecycleManager(
        classifier,
        training=settings.training.model_copy(update=overrides),
        grace_period=settings.model.conflict_grace_period,
    )
    lifecycle.add_listener(
        lambda previous, current: click.echo(f"  Model: {current.value}")
    )
    return lifecycle


def ensure_ready(lifecycle: ModelLifecycleManager) -> None:
    """Exit with an error unless the lifecycle ended in ``ready``."""
    if lifecycle.state == ModelState.ERROR:
        click.echo(f"Error: {lifecycle.error}", err=True)
        sys.exit(1)
    if lifecycle.degraded:
        click.echo(f"⚠ {lifecycle.warning}", err=True)


def format_report(report: TrainingReport) -> list[str]:
    lines = [
        f"Samples: {report.train_samples} train / {report.validation_samples} validation",
        f"Epochs: {report.epochs} ({report.duration_seconds:.1f}s)",
    ]
    for epoch in report.history:
        line = f"  {epoch.epoch:>3}  loss={epoch.loss:.4f}  acc={epoch.accuracy:.3f}"
        if epoch.val_accuracy is not None:
            line += f"  val_loss={epoch.val_loss:.4f}  val_acc={epoch.val_accuracy:.3f}"
        lines.append(line)
    return lines


def format_snapshot(snapshot: AnalysisSnapshot, elapsed: float) -> str:
    return (
        f"t={elapsed:6.1f}s  phase={snapshot.phase.value:<7}  "
        f"conf={snapshot.confidence:.2f}  signal={snapshot.pattern_signal:.3f}  "
        f"quality={snapshot.pattern_quality.value:<10}  cycles={snapshot.total_cycles}"
    )


def version_callback(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Show version."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"breathflow, version {__version__}")
    ctx.exit()


@click.group()
@click.option(
    "--version",
    is_flag=True,
    callback=version_callback,
    expose_value=False,
    is_eager=True,
    help="Show version",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """breathflow: breathing pattern control signal"""
    setup_logging(verbose=verbose, console_format="%(levelname)s: %(message)s")


# ============================================================================
# Training
# ============================================================================


@cli.command()
@click.option("--epochs", type=click.IntRange(min=1), help="Training epochs")
@click.option("--samples", type=click.IntRange(min=2), help="Synthetic dataset size")
@click.option("--seed", type=int, help="Random seed for reproducible training")
@click.option("--force", is_flag=True, help="Discard the stored model and retrain")
@click.option("--db", type=click.Path(), help="Database path")
def train(
    epochs: int | None,
    samples: int | None,
    seed: int | None,
    force: bool,
    db: str | None,
) -> None:
    """Load the stored model, training one if none exists."""
    settings, classifier = open_classifier(db)
    lifecycle = build_lifecycle(
        settings, classifier, epochs=epochs, dataset_size=samples, seed=seed
    )

    if force:
        click.echo("Force retrain: discarding stored model...")
        lifecycle.force_retrain()
    else:
        lifecycle.initialize()

    ensure_ready(lifecycle)

    if lifecycle.report is not None:
        click.echo("\nTraining report")
        click.echo(f"{'=' * 50}")
        for line in format_report(lifecycle.report):
            click.echo(line)
        click.echo(f"{'=' * 50}")
        click.echo(f"✓ Model trained and saved as {classifier.name!r}")
    elif not lifecycle.degraded:
        click.echo(f"✓ Loaded stored model {classifier.name!r} (use --force to retrain)")


# ============================================================================
# Model inspection
# ============================================================================


@cli.group()
def model() -> None:
    """Stored model commands."""
    pass


@model.command("info")
@click.option("--db", type=click.Path(), help="Database path")
def model_info(db: str | None) -> None:
    """Show the stored model's summary."""
    _, classifier = open_classifier(db)

    if not classifier.load():
        click.echo(f"No stored model {classifier.name!r}.")
        click.echo("Train one with: breathflow train")
        return

    info = classifier.info() or {}
    store = classifier.store
    size_kb = store.total_size(classifier.key_prefix) / 1024

    click.echo(f"\n🫁 Model {classifier.name!r}")
    click.echo(f"{'=' * 50}")
    click.echo(f"Parameters: {info['total_params']:,}")
    click.echo(f"Input shape: {info['input_shape']}")
    click.echo(f"Classes: {', '.join(info['classes'])}")
    click.echo(f"Trained: {'yes' if info['trained'] else 'no'}")
    if info["final_accuracy"] is not None:
        click.echo(f"Final accuracy: {info['final_accuracy']:.3f}")
    if info["final_val_accuracy"] is not None:
        click.echo(f"Final validation accuracy: {info['final_val_accuracy']:.3f}")
    click.echo(f"\nStored parts ({size_kb:.1f} KB):")
    for key in store.list_keys(classifier.key_prefix):
        click.echo(f"  {key}")
    click.echo(f"{'=' * 50}\n")


@model.command("clear")
@click.option("--db", type=click.Path(), help="Database path")
@click.confirmation_option(prompt="Are you sure you want to delete the stored model?")
def model_clear(db: str | None) -> None:
    """Delete every stored part of the model."""
    _, classifier = open_classifier(db)
    removed = classifier.clear_persisted()

    if removed:
        click.echo(f"✓ Removed {removed} stored part(s) of {classifier.name!r}")
    else:
        click.echo(f"No stored model {classifier.name!r}.")


@model.command("predict-demo")
@click.option("--frames", type=click.IntRange(min=1), default=10, help="Frames to classify")
@click.option("--seed", type=int, help="Random seed for the synthetic frames")
@click.option("--db", type=click.Path(), help="Database path")
def model_predict_demo(frames: int, seed: int | None, db: str | None) -> None:
    """Classify alternating synthetic inhale/exhale frames."""
    settings, classifier = open_classifier(db)
    if not classifier.load():
        click.echo("Error: No stored model. Run: breathflow train", err=True)
        sys.exit(1)

    source = SyntheticBreathSource(
        phase_seconds=1.0, bin_count=settings.capture.fft_size // 2, seed=seed
    )
    extractor = SpectrumFeatureExtractor(max_magnitude=source.max_magnitude)

    correct = 0
    click.echo(f"{'Frame':>5}  {'Expected':<8}  {'Predicted':<9}  {'Conf':>5}  {'Score':>5}")
    for frame in range(frames):
        expected = source.phase_at(float(frame))
        prediction = classifier.predict(extractor.extract(source.spectrum_at(float(frame))))
        correct += prediction.phase == expected
        click.echo(
            f"{frame:>5}  {expected.value:<8}  {prediction.phase.value:<9}  "
            f"{prediction.confidence:>5.2f}  {prediction.breathing_score:>5.2f}"
        )

    click.echo(f"\nAccuracy: {correct}/{frames}")


# ============================================================================
# Pipeline
# ============================================================================


@cli.command()
@click.option("--duration", type=click.FloatRange(min=0), help="Seconds to listen (default: until Ctrl+C)")
@click.option("--device", help="Input device name or index")
@click.option("--db", type=click.Path(), help="Database path")
def listen(duration: float | None, device: str | None, db: str | None) -> None:
    """Run the live microphone pipeline and print snapshots."""
    settings, classifier = open_classifier(db)
    lifecycle = build_lifecycle(settings, classifier)
    lifecycle.initialize()
    ensure_ready(lifecycle)

    capture = settings.capture
    selected: str | int | None = device if device is not None else capture.device
    if isinstance(selected, str) and selected.isdigit():
        selected = int(selected)

    source = SounddeviceSpectrumSource(
        sample_rate=capture.sample_rate, fft_size=capture.fft_size, device=selected
    )
    pipeline = BreathPipeline(
        source,
        classifier,
        lifecycle,
        analyzer=BreathingPatternAnalyzer(**settings.analyzer.model_dump()),
        frame_rate=capture.frame_rate,
    )

    if not pipeline.start():
        raise click.ClickException(pipeline.last_error or "Pipeline failed to start")

    click.echo("Listening... (Ctrl+C to stop)")
    started = time.monotonic()
    try:
        while pipeline.is_running:
            elapsed = time.monotonic() - started
            if duration is not None and elapsed >= duration:
                break
            time.sleep(0.5)
            click.echo(format_snapshot(pipeline.get_snapshot(), elapsed))
    except KeyboardInterrupt:
        click.echo("")
    finally:
        pipeline.stop()

    if pipeline.last_error:
        raise click.ClickException(pipeline.last_error)
    click.echo("✓ Stopped")


@cli.command()
@click.option("--cycles", type=click.IntRange(min=1), default=12, help="Breathing cycles to simulate")
@click.option(
    "--phase-seconds", type=click.FloatRange(min=0.1), default=1.4, help="Duration of each phase"
)
@click.option("--seed", type=int, help="Random seed for synthetic spectra")
@click.option("--db", type=click.Path(), help="Database path")
def simulate(cycles: int, phase_seconds: float, seed: int | None, db: str | None) -> None:
    """Drive the pipeline with synthetic breathing and print the signal trajectory."""
    settings, classifier = open_classifier(db)
    lifecycle = build_lifecycle(settings, classifier)
    lifecycle.initialize()
    ensure_ready(lifecycle)

    frame_rate = settings.capture.frame_rate
    source = SyntheticBreathSource(
        phase_seconds=phase_seconds, bin_count=settings.capture.fft_size // 2, seed=seed
    )
    pipeline = BreathPipeline(
        source,
        classifier,
        lifecycle,
        analyzer=BreathingPatternAnalyzer(
            **settings.analyzer.model_dump(), clock=lambda: 0.0
        ),
        frame_rate=frame_rate,
    )

    total_frames = int(round(cycles * 2 * phase_seconds * frame_rate))
    report_every = max(1, int(round(frame_rate)))

    snapshot = pipeline.get_snapshot()
    for frame in range(1, total_frames + 1):
        elapsed = frame / frame_rate
        snapshot = pipeline.process_frame(source.spectrum_at(elapsed), elapsed)
        if frame % report_every == 0:
            click.echo(format_snapshot(snapshot, elapsed))

    click.echo(f"\n{'=' * 50}")
    click.echo(f"Cycles detected: {snapshot.total_cycles}")
    click.echo(f"Pattern signal: {snapshot.pattern_signal:.3f}")
    click.echo(f"Pattern quality: {snapshot.pattern_quality.value}")
    click.echo(f"Pattern detected: {'yes' if snapshot.is_pattern_detected else 'no'}")
    click.echo(f"{'=' * 50}")


# ============================================================================
# Database
# ============================================================================


@cli.group()
def db() -> None:
    """Database management commands."""
    pass


@db.command()
@click.option("--db", type=click.Path(), help="Database path")
def init(db: str | None) -> int | None:
    """Initialize database (creates tables if needed)."""
    db_path = str(Path(db)) if db else get_settings().model.database

    init_database(db_path)
    click.echo(f"✓ Database initialized at {db_path}")
    return None


@db.command()
@click.option("--db", type=click.Path(), help="Database path")
def stats(db: str | None) -> None:
    """Show database statistics."""
    db_path = Path(db) if db else Path(get_settings().model.database)
    init_database(str(db_path))
    store = ModelStore()

    keys = store.list_keys()
    models = sorted({key.split("/", 1)[0] for key in keys})

    size_bytes = os.path.getsize(db_path) if db_path.exists() else 0
    size_mb = size_bytes / (1024 * 1024)

    click.echo("\n📊 Database Statistics")
    click.echo(f"{'=' * 50}")
    click.echo(f"Database: {get_database_path()}")
    click.echo(f"Size: {size_mb:.1f} MB")
    click.echo(f"\nStored blobs: {len(keys)}")
    click.echo(f"Blob bytes: {store.total_size():,}")
    click.echo(f"Models: {', '.join(models) if models else 'none'}")
    click.echo(f"{'=' * 50}\n")


# ============================================================================
# Configuration
# ============================================================================


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("show")
def show_config_cmd() -> None:
    """Show all configuration settings."""
    config_path = get_config_path()
    if not config_path.exists():
        click.echo(f"No config file: {config_path}")
        return

    click.echo(f"Config file: {config_path}\n")
    config_data = load_config()
    if not config_data:
        click.echo("Configuration is empty.")
        return

    click.echo("Settings:")
    for section, values in config_data.items():
        if not isinstance(values, dict):
            click.echo(f"  {section} = {values!r}")
            continue
        click.echo(f"  [{section}]")
        for key, value in values.items():
            click.echo(f"    {key} = {value!r}")


@config.command("set")
@click.argument("key")
@click.argument("value")
def set_config_cmd(key: str, value: str) -> None:
    """Set a config value, e.g. `breathflow config set training.epochs 20`."""
    try:
        set_config_value(key, parse_config_value(value))
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"✓ {key} = {value}")
    click.echo(f"  Config: {get_config_path()}")


@config.command("unset")
@click.argument("key")
def unset_config_cmd(key: str) -> None:
    """Remove a config value."""
    try:
        removed = unset_config_value(key)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    if removed:
        click.echo(f"✓ Removed {key}")
    else:
        click.echo(f"{key} was not set.")
