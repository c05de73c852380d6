"""track_diagnostics.py

Lightweight track statistics:
- track length histogram
- per-view track coverage
- JSON report + one-line text summary

Works on an exported TracksMap only; no graph state needed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from data_io.parsing import save_data
from trackfuse.tracks import TracksMap, TracksPerView
from trackfuse.tracks_utils import compute_tracks_per_view, tracks_length


def summarize_tracks(
    tracks: TracksMap,
    tracks_per_view: Optional[TracksPerView] = None,
) -> Dict[str, Any]:
    """Counts and distributions describing a TracksMap."""
    if tracks_per_view is None:
        tracks_per_view = compute_tracks_per_view(tracks)

    lengths = np.array([len(t.obs) for t in tracks.values()], dtype=np.int64)
    per_view = np.array([ids.size for ids in tracks_per_view.values()], dtype=np.int64)

    desc_counts: Dict[str, int] = {}
    for t in tracks.values():
        desc_counts[t.desc_type.value] = desc_counts.get(t.desc_type.value, 0) + 1

    summary: Dict[str, Any] = {
        "num_tracks": int(len(tracks)),
        "num_views": int(len(tracks_per_view)),
        "num_observations": int(lengths.sum()) if lengths.size else 0,
        "length_histogram": {str(k): v for k, v in tracks_length(tracks).items()},
        "mean_length": float(lengths.mean()) if lengths.size else 0.0,
        "median_length": float(np.median(lengths)) if lengths.size else 0.0,
        "max_length": int(lengths.max()) if lengths.size else 0,
        "tracks_per_view_min": int(per_view.min()) if per_view.size else 0,
        "tracks_per_view_median": float(np.median(per_view)) if per_view.size else 0.0,
        "tracks_per_view_max": int(per_view.max()) if per_view.size else 0,
        "desc_types": dict(sorted(desc_counts.items())),
    }
    return summary


def format_track_summary(summary: Dict[str, Any]) -> str:
    hist = " ".join(f"{k}:{v}" for k, v in summary["length_histogram"].items())
    return (
        f"[tracks] tracks={summary['num_tracks']} views={summary['num_views']} "
        f"obs={summary['num_observations']} mean_len={summary['mean_length']:.2f} "
        f"per_view[min/med/max]={summary['tracks_per_view_min']}/"
        f"{summary['tracks_per_view_median']:.0f}/{summary['tracks_per_view_max']} "
        f"hist=[{hist}]"
    )


def save_track_report(summary: Dict[str, Any], path: Union[str, Path]) -> Path:
    return save_data(summary, path)
