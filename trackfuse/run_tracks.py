"""
trackfuse/run_tracks.py

Main entry point for the track building pipeline.
This is a thin orchestrator that calls the modular components.

ALL numeric defaults come from config.py - no hardcoded values here.
"""

from __future__ import annotations
from pathlib import Path
from threading import Event
from typing import Optional

from data_io.tracks_io import save_tracks_text
from utils.logging_utils import make_logger, timed

from .diagnostics.track_diagnostics import format_track_summary, save_track_report, summarize_tracks
from .pipeline.config import TracksConfig, get_default_config
from .pipeline.state import TracksResult
from .pipeline.tracks_builder import FeatureCounts, TracksBuilder
from .tracks import PairwiseMatches
from .tracks_utils import compute_tracks_per_view


def run_track_building(
    pairwise_matches: PairwiseMatches,
    config: Optional[TracksConfig] = None,
    feature_counts: Optional[FeatureCounts] = None,
    out_dir: Optional[str] = None,
    cancel_event: Optional[Event] = None,
) -> TracksResult:
    """
    Fuse pairwise matches into filtered multi-view tracks.

    Args:
        pairwise_matches: {(view_i, view_j): {desc_type: [(feat_i, feat_j), ...]}}
        config: TracksConfig (if None, uses get_default_config())
        feature_counts: {view_id: {desc_type: n_features}}, used for bounds
            checking when config.build.validate_indices is set
        out_dir: Output directory for diagnostics (overrides config.diagnostics.out_dir)
        cancel_event: Set it from another thread to abort build/filter

    Returns:
        TracksResult with the TracksMap, its per-view index and build stats

    Example:
        result = run_track_building(matches)

        config = TracksConfig()
        config.filter.min_track_length = 3
        result = run_track_building(matches, config=config, out_dir="output")
    """
    if config is None:
        config = get_default_config()

    if out_dir is not None:
        config.diagnostics.enabled = True
        config.diagnostics.out_dir = out_dir

    config.validate()

    logger = make_logger("trackfuse", level=(20 if config.verbose else 40))
    logger.info(
        f"Pairs: {len(pairwise_matches)} | clear_forks={config.filter.clear_forks} "
        f"| min_track_length={config.filter.min_track_length} "
        f"| workers={config.filter.resolved_num_workers()}"
    )

    if config.build.validate_indices and feature_counts is None:
        logger.warning("validate_indices is set but no feature_counts were given: skipping bounds check")

    builder = TracksBuilder(logger=logger)

    # =========================================================
    # STAGE 1: Correspondence graph
    # =========================================================
    with timed(logger, "Building correspondence graph"):
        builder.build(
            pairwise_matches,
            feature_counts=feature_counts if config.build.validate_indices else None,
            cancel_event=cancel_event,
        )

    # =========================================================
    # STAGE 2: Filtering
    # =========================================================
    with timed(logger, "Filtering components"):
        builder.filter_with_config(config.filter, cancel_event=cancel_event)

    # =========================================================
    # STAGE 3: Export + per-view index
    # =========================================================
    with timed(logger, "Exporting tracks"):
        tracks = builder.export_to_map()
        tracks_per_view = compute_tracks_per_view(tracks)

    summary = summarize_tracks(tracks, tracks_per_view)
    logger.info(builder.stats.summary())
    logger.info(format_track_summary(summary))

    result = TracksResult(
        tracks=tracks,
        tracks_per_view=tracks_per_view,
        stats=builder.stats,
        config=config,
        summary=summary,
    )

    # =========================================================
    # STAGE 4: Diagnostics
    # =========================================================
    diag = config.diagnostics
    if diag.enabled and diag.out_dir:
        out_path = Path(diag.out_dir)
        if diag.save_text_export:
            p = save_tracks_text(tracks, out_path / "tracks.txt")
            logger.info(f"Saved tracks: {p}")
        if diag.save_report:
            p = save_track_report(summary, out_path / "tracks_report.json")
            logger.info(f"Saved report: {p}")

    return result
