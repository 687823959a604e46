"""Configuration management for breathflow."""

import logging
import os
import tomllib

from pathlib import Path
from typing import Any

import tomli_w

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from breathflow.constants import DEFAULT_DATABASE_PATH, DEFAULT_HOME, DEFAULT_LOG_BACKUP_COUNT
from breathflow.constants import CaptureConstants as CAP
from breathflow.constants import ClassifierConstants as CC
from breathflow.constants import LifecycleConstants as LC
from breathflow.constants import PatternAnalysisConstants as PAC
from breathflow.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "AnalyzerSettings",
    "BreathFlowSettings",
    "CaptureSettings",
    "LoggingSettings",
    "ModelSettings",
    "TrainingSettings",
    "get_config_path",
    "get_settings",
    "load_config",
    "save_config",
    "set_config_value",
    "unset_config_value",
]


# ============================================================================
# Settings models
# ============================================================================


class LoggingSettings(BaseModel):
    """File logging options ([logging] section)."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    directory: str | None = None
    level: str = "DEBUG"
    max_size_mb: int = Field(default=10, ge=1)
    backup_count: int = Field(default=DEFAULT_LOG_BACKUP_COUNT, ge=0)


class ModelSettings(BaseModel):
    """Model storage options ([model] section)."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default=LC.DEFAULT_MODEL_NAME, min_length=1)
    database: str = DEFAULT_DATABASE_PATH
    conflict_grace_period: float = Field(default=LC.CONFLICT_GRACE_PERIOD, ge=0)


class TrainingSettings(BaseModel):
    """Synthetic training options ([training] section)."""

    model_config = ConfigDict(frozen=True)

    dataset_size: int = Field(default=CC.DATASET_SIZE, ge=2)
    epochs: int = Field(default=CC.EPOCHS, ge=1)
    validation_split: float = Field(default=CC.VALIDATION_SPLIT, ge=0, lt=1)
    batch_size: int = Field(default=CC.BATCH_SIZE, ge=1)
    learning_rate: float = Field(default=CC.LEARNING_RATE, gt=0)
    seed: int | None = None


class AnalyzerSettings(BaseModel):
    """Pattern analyzer tunables ([analyzer] section)."""

    model_config = ConfigDict(frozen=True)

    confidence_floor: float = Field(default=PAC.CONFIDENCE_FLOOR, ge=0, le=1)
    min_phase_duration: float = Field(default=PAC.MIN_PHASE_DURATION, ge=0)
    min_cycle_duration: float = Field(default=PAC.MIN_CYCLE_DURATION, gt=0)
    max_cycle_duration: float = Field(default=PAC.MAX_CYCLE_DURATION, gt=0)
    smoothing_factor: float = Field(default=PAC.SMOOTHING_FACTOR, gt=0, le=1)
    baseline_noise: float = Field(default=PAC.BASELINE_NOISE, ge=0, lt=1)
    cycle_history_size: int = Field(default=PAC.CYCLE_HISTORY_SIZE, ge=2)
    transition_history_size: int = Field(default=PAC.TRANSITION_HISTORY_SIZE, ge=2)


class CaptureSettings(BaseModel):
    """Audio capture options ([capture] section)."""

    model_config = ConfigDict(frozen=True)

    sample_rate: int = Field(default=CAP.SAMPLE_RATE, gt=0)
    fft_size: int = Field(default=CAP.FFT_SIZE, ge=8)
    frame_rate: float = Field(default=CAP.FRAME_RATE, gt=0)
    device: str | int | None = None


class BreathFlowSettings(BaseModel):
    """All configuration sections merged over their defaults."""

    model_config = ConfigDict(frozen=True)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    training: TrainingSettings = Field(default_factory=TrainingSettings)
    analyzer: AnalyzerSettings = Field(default_factory=AnalyzerSettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)


# ============================================================================
# TOML file access
# ============================================================================


def get_config_path() -> Path:
    """
    Get the path to the configuration file.

    Returns:
        Path to ~/.breathflow/config.toml
    """
    return DEFAULT_HOME / "config.toml"


def load_config() -> dict[str, Any]:
    """
    Load configuration from TOML file.

    Returns:
        Configuration dictionary. Returns empty dict if file doesn't exist
        or is corrupted.
    """
    config_path = get_config_path()

    if not config_path.exists():
        return {}

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.warning("Treating config as empty. Fix or delete the file to resolve.")
        return {}


def save_config(config: dict[str, Any]) -> None:
    """
    Save configuration to TOML file using atomic write.

    Creates the parent directory if it doesn't exist.
    Uses temp file + rename for atomic operation.

    Args:
        config: Configuration dictionary to save

    Raises:
        PermissionError: If directory cannot be created or file cannot be written
    """
    config_path = get_config_path()

    config_dir = config_path.parent
    try:
        os.makedirs(config_dir, exist_ok=True)
    except PermissionError as e:
        raise PermissionError(
            f"Cannot create config directory {config_dir}: {e}"
        ) from e

    temp_path = config_path.with_suffix(".toml.tmp")

    try:
        with open(temp_path, "wb") as f:
            tomli_w.dump(config, f)

        os.replace(temp_path, config_path)

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def get_settings(config: dict[str, Any] | None = None) -> BreathFlowSettings:
    """
    Build validated settings from the config file (or a given dict).

    Invalid files are logged and replaced by defaults rather than aborting.

    Args:
        config: Raw configuration; loaded from disk when None

    Returns:
        Frozen settings object
    """
    raw = load_config() if config is None else config
    known = {k: v for k, v in raw.items() if k in BreathFlowSettings.model_fields}

    try:
        return BreathFlowSettings.model_validate(known)
    except ValidationError as e:
        logger.warning(f"Invalid configuration, using defaults: {e}")
        return BreathFlowSettings()


def _split_key(key: str) -> tuple[str, str]:
    section, _, field = key.partition(".")
    section_model = BreathFlowSettings.model_fields.get(section)
    if not field or section_model is None:
        raise ConfigurationError(
            f"Unknown config key {key!r}; expected <section>.<name> with section in "
            f"{', '.join(BreathFlowSettings.model_fields)}"
        )

    annotation = section_model.annotation
    if annotation is None or field not in annotation.model_fields:
        raise ConfigurationError(f"Unknown config key {key!r}")
    return section, field


def parse_config_value(raw: str) -> Any:
    """Interpret a command-line value as TOML, falling back to a plain string."""
    try:
        return tomllib.loads(f"value = {raw}")["value"]
    except tomllib.TOMLDecodeError:
        return raw


def set_config_value(key: str, value: Any) -> None:
    """
    Set ``section.name`` in the config file after validating it.

    Args:
        key: Dotted key, e.g. ``training.epochs``
        value: New value

    Raises:
        ConfigurationError: If the key is unknown or the value is invalid
    """
    section, field = _split_key(key)
    config = load_config()
    config.setdefault(section, {})[field] = value

    try:
        BreathFlowSettings.model_validate(
            {k: v for k, v in config.items() if k in BreathFlowSettings.model_fields}
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid value for {key}: {e}") from e

    save_config(config)


def unset_config_value(key: str) -> bool:
    """
    Remove ``section.name`` from the config file.

    Empty sections are dropped; an empty config deletes the file.

    Returns:
        True if the key was present
    """
    section, field = _split_key(key)
    config = load_config()

    if section not in config or field not in config[section]:
        return False

    del config[section][field]
    if not config[section]:
        del config[section]

    if not config:
        config_path = get_config_path()
        if config_path.exists():
            config_path.unlink()
    else:
        save_config(config)
    return True
