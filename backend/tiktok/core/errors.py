"""Failures raised by the streaming-platform collaborator."""


class PlatformError(Exception):
    """Base class for streaming-platform failures."""


class LiveCheckFailure(PlatformError):
    """Live status could not be determined (or waiting for live failed)."""


class ConnectionFailure(PlatformError):
    """Joining the live room, or setting up the session for it, failed."""


class EnrichmentFetchFailure(PlatformError):
    """Room details (HLS URL, bio, creation time) could not be fetched."""
