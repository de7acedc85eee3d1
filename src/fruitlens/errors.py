"""Exception hierarchy for the classification pipeline.

Every failure the pipeline can hit is one of these four kinds. They are
caught at the pipeline boundary and turned into a status message, so none
of them should ever escape to the host application.
"""

from __future__ import annotations


class FruitLensError(Exception):
    """Base class for all pipeline errors."""


class InitializationError(FruitLensError):
    """Both the primary and the fallback classifier load failed.

    Terminal for the process: the lifecycle manager never retries.
    """


class CaptureError(FruitLensError):
    """The camera could not be opened or has no decoded frame yet."""


class DecodeError(FruitLensError):
    """Uploaded bytes are not a decodable image (or exceed size limits)."""


class ClassificationError(FruitLensError):
    """The classifier is not ready, or the classifier call itself failed."""
