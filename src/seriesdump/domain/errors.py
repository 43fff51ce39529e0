"""Exception hierarchy for seriesdump."""

from __future__ import annotations


class SeriesDumpError(Exception):
    """Base exception for all seriesdump errors."""


class ResolutionError(SeriesDumpError):
    """Raised when a UID or a name has no counterpart in the UID table."""


class IllegalDataError(SeriesDumpError):
    """Raised when stored bytes do not follow the expected encoding."""


class MalformedColumnError(IllegalDataError):
    """Raised when a compacted column cannot be split into whole cells."""


class QueryError(SeriesDumpError, ValueError):
    """Raised when command-line query tokens cannot be parsed."""


class StoreError(SeriesDumpError):
    """Raised when the storage gateway answers with something unusable."""
