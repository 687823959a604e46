"""Exception types shared across the breathflow pipeline."""


class BreathFlowError(Exception):
    """Base class for breathflow errors."""


class ConfigurationError(BreathFlowError, ValueError):
    """Programmer or setup error that cannot be recovered at runtime."""


class AcquisitionError(BreathFlowError):
    """Audio device could not be opened or read."""


class InitializationError(BreathFlowError):
    """Classifier could not be loaded, trained or built."""


class TrainingConflictError(BreathFlowError):
    """Another training run already holds the model's training slot."""

    def __init__(self, key: str):
        super().__init__(f"Training already in progress for {key!r}")
        self.key = key
