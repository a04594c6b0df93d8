"""Error taxonomy for deployment scoring, factor ranking and recommendations."""

from __future__ import annotations


class DeploymentError(ValueError):
    """Base class for configuration and schema errors raised before scoring."""


class SchemaMismatch(DeploymentError):
    """Columns (raw or encoded) differ from the training-time schema."""


class UnknownLevel(DeploymentError):
    """A categorical value was not seen when the encoder was fit."""


class NumericLevelsRequired(DeploymentError):
    """A numeric modifiable variable was requested without candidate values."""


class EmptyCandidateSet(DeploymentError):
    """A modifiable variable resolved to zero usable candidate values."""


class GrainNotFound(DeploymentError):
    """A requested grain ID is absent from the deployment batch."""
