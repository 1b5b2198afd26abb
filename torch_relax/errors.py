"""Error types raised by TorchRelax.

Every error derives from :class:`OptimError` and also from the builtin
exception that best matches it, so callers can catch either.
"""


class OptimError(Exception):
    """Base class for all TorchRelax errors."""


class EvaluationError(OptimError, RuntimeError):
    """The evaluator or model failed to produce energy and forces."""


class ConfigurationError(OptimError, ValueError):
    """Malformed optimizer configuration."""


class UsageError(OptimError, ValueError):
    """A caller or model violated an interface contract.

    Raised e.g. when a model result lacks energy or forces, or when a position
    vector has the wrong length.
    """


class RestoreError(OptimError, RuntimeError):
    """Restoring a structure from a checkpoint failed."""
