"""Custom exception classes for TrackFuse."""

from __future__ import annotations

from typing import Optional, Tuple


class TrackFuseError(Exception):
    """Base exception for all TrackFuse errors."""

    pass


class MalformedMatchesError(TrackFuseError, ValueError):
    """Raised when pairwise matches reference invalid views or features."""

    def __init__(self, message: str, pair: Optional[Tuple[int, int]] = None):
        self.pair = pair
        super().__init__(message)


class TracksBuilderStateError(TrackFuseError, RuntimeError):
    """Raised when builder stages are called out of order."""

    pass


class TracksBuildCancelled(TrackFuseError):
    """Raised when a build or filter pass is cancelled."""

    pass


class TrackDescriberTypeError(TrackFuseError, ValueError):
    """Raised when one component mixes observations of different describer types."""

    pass


class TrackContractError(TrackFuseError, ValueError):
    """Raised when a track set does not have the shape a utility requires."""

    def __init__(self, message: str, track_id: Optional[int] = None):
        self.track_id = track_id
        super().__init__(message)


class ConfigError(TrackFuseError, ValueError):
    """Raised when configuration values are invalid."""

    pass
