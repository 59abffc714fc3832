"""Exception hierarchy shared by the ingestion pipeline stages."""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class ConfigError(PipelineError):
    """Invalid or incomplete configuration detected at startup."""


class DecodeError(PipelineError):
    """A line received from the log shipper is not a valid event."""


class ResolutionError(PipelineError):
    """An IP address could not be turned into coordinates."""


class EncodingError(PipelineError):
    """Coordinates or precision cannot be encoded into a spatial token."""


class StorageError(PipelineError):
    """The time-series backend rejected or failed to receive a point."""
