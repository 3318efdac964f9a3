"""
Exceptions raised by the sync pipeline.
Fatal errors abort a run; the rest are caught per entity and reported.
"""
from __future__ import annotations
from typing import Any, Optional


class SyncError(Exception):
    """Base class for every pipeline error."""


class ConfigError(SyncError):
    """Required configuration is missing or invalid."""


class FetchError(SyncError):
    """The tabular source could not be fetched."""

    def __init__(self, message: str, url: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class SourceParseError(SyncError):
    """The tabular source could not be parsed."""


class MissingColumnsError(SourceParseError):
    def __init__(self, columns: list[str]) -> None:
        super().__init__(f"Missing required columns: {', '.join(columns)}")
        self.columns = columns


class CommerceApiError(SyncError):
    """The commerce platform answered with an error."""

    def __init__(self, message: str, status: int, details: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.details = details


class MediaError(SyncError):
    """A media probe, download or upload failed."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class MediaFolderNotFoundError(MediaError):
    pass


class NotFoundError(SyncError):
    """A requested entity is unknown remotely or absent from the source."""
