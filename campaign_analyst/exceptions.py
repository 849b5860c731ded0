"""
Error taxonomy for the campaign analysis package.

Data-loading and partitioning errors (``FormatError``, ``InvalidArgument``)
are fatal to a comparison run. ``ModelError`` and its subclasses describe the
failure of a single model adapter; the comparison pipeline records them per
model and carries on with the remaining adapters.
"""

from typing import Optional


class CampaignAnalystError(Exception):
    """Base class for all errors raised by this package."""


class FormatError(CampaignAnalystError):
    """Malformed input file: ragged rows, bad header, non-binary label."""


class InvalidArgument(CampaignAnalystError, ValueError):
    """Bad argument to a data operation (partition fraction, empty subset, ...)."""


class ModelError(CampaignAnalystError):
    """Failure of a single model adapter."""

    def __init__(self, message: str, model: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message)
        self.model = model
        self.stage = stage

    def __str__(self) -> str:
        message = super().__str__()
        if self.model and self.stage:
            return f"[{self.model}/{self.stage}] {message}"
        if self.model:
            return f"[{self.model}] {message}"
        return message


class InvalidConfig(ModelError):
    """Hyperparameters or training data the adapter cannot work with."""


class ConvergenceError(ModelError):
    """An iterative optimiser stopped at its iteration budget without converging."""


__all__ = [
    "CampaignAnalystError",
    "FormatError",
    "InvalidArgument",
    "ModelError",
    "InvalidConfig",
    "ConvergenceError",
]
