"""
trackfuse/tracks_utils.py

Read-only queries over an exported TracksMap and its per-view index.

Functions come in pairs: a naive version scanning the TracksMap, and a
"_fast" version reading the per-view index built by compute_tracks_per_view().
The index must be recomputed whenever the TracksMap changes.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Mapping, Sequence, Set, Tuple, Union

import numpy as np

from trackfuse.exceptions import TrackContractError
from trackfuse.tracks import (
    DescriberType,
    FeatureId,
    IndMatch,
    Track,
    TracksMap,
    TracksPerView,
    TracksPyramidPerView,
)


# =========================================================
# Per-view index
# =========================================================

def compute_tracks_per_view(tracks: TracksMap) -> TracksPerView:
    """For each view, the ascending array of track ids observed in it."""
    per_view: Dict[int, List[int]] = defaultdict(list)
    for track_id, track in tracks.items():
        for view_id in track.obs:
            per_view[view_id].append(track_id)

    # insertion order is not assumed sorted
    return {
        view_id: np.sort(np.asarray(ids, dtype=np.int64))
        for view_id, ids in sorted(per_view.items())
    }


# =========================================================
# Tracks visible in image(s)
# =========================================================

def get_tracks_in_image(image_id: int, tracks: TracksMap) -> Set[int]:
    return {track_id for track_id, track in tracks.items() if image_id in track.obs}


def get_tracks_in_image_fast(image_id: int, tracks_per_view: TracksPerView) -> Set[int]:
    ids = tracks_per_view.get(image_id)
    if ids is None:
        return set()
    return set(ids.tolist())


def get_tracks_in_images(image_ids: Iterable[int], tracks: TracksMap) -> Set[int]:
    """Tracks visible in at least one of the images."""
    wanted = set(image_ids)
    return {
        track_id for track_id, track in tracks.items()
        if not wanted.isdisjoint(track.obs)
    }


def get_tracks_in_images_fast(image_ids: Iterable[int], tracks_per_view: TracksPerView) -> Set[int]:
    out: Set[int] = set()
    for image_id in image_ids:
        ids = tracks_per_view.get(image_id)
        if ids is not None:
            out.update(ids.tolist())
    return out


# =========================================================
# Tracks common to every image of a set
# =========================================================

def get_common_tracks_in_images(image_ids: Iterable[int], tracks: TracksMap) -> TracksMap:
    """
    Tracks visible in ALL the given images (naive scan).

    Returned tracks only hold the observations of the requested images.
    """
    wanted = sorted(set(image_ids))
    out: TracksMap = {}
    if not wanted:
        return out

    for track_id, track in tracks.items():
        if all(v in track.obs for v in wanted):
            out[track_id] = Track(
                desc_type=track.desc_type,
                obs={v: track.obs[v] for v in wanted},
            )
    return out


def get_common_track_ids_in_images(
    image_ids: Iterable[int],
    tracks_per_view: TracksPerView,
) -> Set[int]:
    """
    Ids of the tracks visible in ALL the given images, by intersecting the
    sorted per-view lists (shortest first).
    """
    wanted = set(image_ids)
    if not wanted:
        return set()

    lists = []
    for image_id in wanted:
        ids = tracks_per_view.get(image_id)
        if ids is None or ids.size == 0:
            return set()
        lists.append(ids)

    lists.sort(key=len)
    common = lists[0]
    for ids in lists[1:]:
        common = np.intersect1d(common, ids, assume_unique=True)
        if common.size == 0:
            break
    return set(common.tolist())


def get_common_tracks_in_images_fast(
    image_ids: Iterable[int],
    tracks: TracksMap,
    tracks_per_view: TracksPerView,
) -> TracksMap:
    """Same result as get_common_tracks_in_images(), using the per-view index."""
    wanted = sorted(set(image_ids))
    out: TracksMap = {}
    for track_id in sorted(get_common_track_ids_in_images(wanted, tracks_per_view)):
        track = tracks.get(track_id)
        if track is None or any(v not in track.obs for v in wanted):
            continue
        out[track_id] = Track(
            desc_type=track.desc_type,
            obs={v: track.obs[v] for v in wanted},
        )
    return out


# =========================================================
# Misc
# =========================================================

def get_track_ids(tracks: TracksMap) -> List[int]:
    return sorted(tracks)


def tracks_length(tracks: TracksMap) -> Dict[int, int]:
    """Histogram {track length (n views): number of tracks}, ordered by length."""
    counts = Counter(len(track.obs) for track in tracks.values())
    return dict(sorted(counts.items()))


def image_ids_in_tracks(tracks: Union[TracksMap, TracksPerView]) -> Set[int]:
    """View ids referenced by a TracksMap or by a per-view index."""
    image_ids: Set[int] = set()
    for key, value in tracks.items():
        if isinstance(value, Track):
            image_ids.update(value.obs)
        else:
            image_ids.add(key)
    return image_ids


def get_feature_id_in_view_per_track(
    tracks: TracksMap,
    track_ids: Iterable[int],
    view_id: int,
) -> List[FeatureId]:
    """
    (describer type, feature index) in view_id of each requested track.

    Tracks that don't exist, or are not seen in view_id, are skipped.
    """
    out: List[FeatureId] = []
    for track_id in track_ids:
        track = tracks.get(track_id)
        if track is None:
            continue
        feat_id = track.obs.get(view_id)
        if feat_id is not None:
            out.append((track.desc_type, feat_id))
    return out


def tracks_to_indexed_matches(tracks: TracksMap, filter_index: Sequence[int]) -> List[IndMatch]:
    """
    Convert two-view tracks to (feature in view A, feature in view B) matches,
    view A being the smaller view id.

    Every requested track must exist and have exactly 2 observations.
    """
    matches: List[IndMatch] = []
    for track_id in filter_index:
        track = tracks.get(track_id)
        if track is None:
            raise TrackContractError(f"Track {track_id} not found", track_id=track_id)
        if len(track.obs) != 2:
            raise TrackContractError(
                f"Track {track_id} has {len(track.obs)} observations, expected 2",
                track_id=track_id,
            )
        (_, feat_i), (_, feat_j) = sorted(track.obs.items())
        matches.append((feat_i, feat_j))
    return matches


# =========================================================
# Pyramid (spatial spread of tracks in a view)
# =========================================================

def _pyramid_cell_offsets(pyramid_base: int, pyramid_depth: int) -> List[int]:
    """Index of the first cell of each level; level l has (base^(l+1))^2 cells."""
    offsets = [0]
    for level in range(pyramid_depth - 1):
        k = pyramid_base ** (level + 1)
        offsets.append(offsets[-1] + k * k)
    return offsets


def compute_tracks_pyramid_per_view(
    tracks_per_view: TracksPerView,
    tracks: TracksMap,
    keypoints_per_view: Mapping[int, Mapping[Union[str, DescriberType], np.ndarray]],
    image_sizes: Mapping[int, Tuple[int, int]],
    pyramid_base: int = 2,
    pyramid_depth: int = 5,
) -> TracksPyramidPerView:
    """
    For each view, map (track_id * pyramid_depth + level) to the absolute
    cell that holds the track's keypoint at that pyramid level.

    Cells of level l form a K x K grid with K = pyramid_base^(l+1); cells are
    numbered level after level, row-major inside a level.

    Args:
        keypoints_per_view: {view_id: {desc_type: (N, 2) pixel positions}}
        image_sizes: {view_id: (width, height)}

    Views without keypoints or with a missing or zero size are skipped, as are
    tracks whose describer type or feature index has no keypoint in the view.
    """
    if pyramid_base < 2 or pyramid_depth < 1:
        raise ValueError(f"Invalid pyramid base/depth: {pyramid_base}/{pyramid_depth}")

    offsets = _pyramid_cell_offsets(pyramid_base, pyramid_depth)
    cells_per_side = [pyramid_base ** (level + 1) for level in range(pyramid_depth)]

    out: TracksPyramidPerView = {}
    for view_id, track_ids in tracks_per_view.items():
        if view_id not in image_sizes or view_id not in keypoints_per_view:
            continue
        w, h = image_sizes[view_id]
        if w <= 0 or h <= 0:
            continue
        kps = {DescriberType.parse(d): np.asarray(p, dtype=np.float64)
               for d, p in keypoints_per_view[view_id].items()}

        cells: Dict[int, int] = {}
        for track_id in track_ids.tolist():
            track = tracks.get(track_id)
            if track is None or view_id not in track.obs:
                continue
            positions = kps.get(track.desc_type)
            feat_id = track.obs[view_id]
            if positions is None or feat_id >= len(positions):
                continue
            xy = positions[feat_id]
            for level, k in enumerate(cells_per_side):
                cx = min(max(int(xy[0] * k / w), 0), k - 1)
                cy = min(max(int(xy[1] * k / h), 0), k - 1)
                cells[track_id * pyramid_depth + level] = offsets[level] + cy * k + cx
        out[view_id] = cells
    return out


def compute_pyramid_score(
    view_id: int,
    track_ids: Iterable[int],
    tracks_pyramid_per_view: TracksPyramidPerView,
    pyramid_base: int = 2,
    pyramid_depth: int = 5,
) -> int:
    """
    Score how well the given tracks cover view_id: at each level, the number
    of occupied cells weighted by that level's cells per side.
    """
    cells = tracks_pyramid_per_view.get(view_id)
    if not cells:
        return 0

    occupied = [set() for _ in range(pyramid_depth)]
    for track_id in track_ids:
        for level in range(pyramid_depth):
            cell = cells.get(track_id * pyramid_depth + level)
            if cell is not None:
                occupied[level].add(cell)

    return sum(len(occ) * pyramid_base ** (level + 1) for level, occ in enumerate(occupied))
