"""Exception types raised by the tracker."""


class TrackerError(Exception):
    """Base class for errors raised by the tracker core."""


class NotFound(TrackerError, LookupError):
    """A phase or lesson identifier did not resolve."""


class ValidationError(TrackerError, ValueError):
    """Input rejected before any state was changed."""
