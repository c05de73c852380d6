"""
trackfuse/pipeline/__init__.py

Staged track building pipeline.

Usage:
    from trackfuse.pipeline import TracksBuilder, TracksConfig, build_tracks

    # Staged
    builder = TracksBuilder()
    builder.build(pairwise_matches)
    builder.filter(clear_forks=True, min_track_length=2)
    tracks = builder.export_to_map()

    # With config
    config = TracksConfig()
    config.filter.min_track_length = 3
    tracks, stats = build_tracks(pairwise_matches, config=config)
"""

from .config import (
    TracksConfig,
    BuildConfig,
    FilterConfig,
    DiagnosticsConfig,
    load_config,
    get_default_config,
    get_two_view_config,
    get_strict_config,
    get_debug_config,
)

from .state import (
    BuilderPhase,
    CorrespondenceGraph,
    TrackBuildStats,
    TracksResult,
)

from .tracks_builder import (
    TracksBuilder,
    build_tracks,
)

__all__ = [
    # Config
    "TracksConfig",
    "BuildConfig",
    "FilterConfig",
    "DiagnosticsConfig",
    "load_config",
    "get_default_config",
    "get_two_view_config",
    "get_strict_config",
    "get_debug_config",
    # State
    "BuilderPhase",
    "CorrespondenceGraph",
    "TrackBuildStats",
    "TracksResult",
    # Builder
    "TracksBuilder",
    "build_tracks",
]
