"""
Exception hierarchy for the fusion engine.

Per-resource problems (UnavailableResource, MalformedGeometry, InvalidGeoCode)
are absorbed as close to the source as possible: the offending resource,
feature or record is dropped and logged. Only LoadFailure reaches the consumer.
"""


class FusionError(Exception):
    """Base class for all fusion engine errors."""


class UnavailableResource(FusionError):
    """A resource fetch failed or the resource was not found."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        message = f"Resource unavailable: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class MalformedGeometry(FusionError, ValueError):
    """A boundary or point feature has no usable coordinates."""


class InvalidGeoCode(FusionError, ValueError):
    """A municipality code cannot be normalized to the canonical 5 characters."""


class LoadFailure(FusionError):
    """Unexpected failure while loading or fusing; the whole cycle is discarded."""
