"""
Error taxonomy.

Each class also derives from the builtin the API layer already maps:
ValueError -> 400, KeyError -> 404, RuntimeError -> 500.
"""
from __future__ import annotations


class MixdownError(Exception):
    """Base class for every error raised by mixdown."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class MetadataFormatError(MixdownError, ValueError):
    """Raw clip metadata could not be parsed as a list of objects."""


class UnreadableTrackError(MixdownError, ValueError):
    """A submitted track could not be probed."""

    def __init__(self, track: str, diagnostic: str = ""):
        msg = f"track '{track}' could not be read"
        if diagnostic:
            msg = f"{msg}: {diagnostic}"
        super().__init__(msg)
        self.track = track
        self.diagnostic = diagnostic


class EmptyPlacementListError(MixdownError, ValueError):
    """At least one clip was required but none was given."""


class InvalidPlanError(MixdownError, RuntimeError):
    """A mix plan violates its graph invariants."""


class EncodeError(MixdownError, RuntimeError):
    """The external encoder failed; diagnostic_text holds the stderr excerpt."""

    def __init__(self, cause: str, diagnostic_text: str = ""):
        msg = cause if not diagnostic_text else f"{cause}: {diagnostic_text}"
        super().__init__(msg)
        self.cause = cause
        self.diagnostic_text = diagnostic_text


class ArtifactNotFoundError(MixdownError, KeyError):
    """The rendered mix artifact does not exist or cannot be probed."""


class ReferenceNotFoundError(MixdownError, KeyError):
    """The reference track used for retrieval trimming does not exist or cannot be probed."""
