"""
trackfuse/pipeline/tracks_builder.py

Fusion of pairwise matches into multi-view tracks.

Implements the union-find track construction of
"Unordered feature tracking made fast and easy" (Moulon & Monasse, CVMP 2012):
every (view, describer type, feature index) becomes a node, every match
unions two nodes, and each connected component is a candidate track.

Usage:
    builder = TracksBuilder()
    builder.build(pairwise_matches)        # fuse correspondences
    builder.filter(True, 2)                # drop forks and 1-view components
    tracks = builder.export_to_map()       # {track_id: Track}
"""

from __future__ import annotations
from threading import Event
from typing import Dict, List, Mapping, Optional, TextIO, Tuple, Union

import numpy as np

from trackfuse.exceptions import (
    MalformedMatchesError,
    TrackDescriberTypeError,
    TracksBuildCancelled,
    TracksBuilderStateError,
)
from trackfuse.tracks import (
    DescriberType,
    IndexedFeaturePair,
    KeypointId,
    PairwiseMatches,
    Track,
    TracksMap,
)
from utils.logging_utils import get_logger

from .config import FilterConfig, TracksConfig
from .filtering import find_discarded_components
from .state import BuilderPhase, CorrespondenceGraph, TrackBuildStats

# (view_i, view_j, describer type, (N, 2) int64 array of matches)
_MatchBlock = Tuple[int, int, DescriberType, np.ndarray]

FeatureCounts = Mapping[int, Mapping[Union[str, DescriberType], int]]


def _as_match_array(matches, pair: Tuple[int, int], desc: DescriberType) -> np.ndarray:
    arr = np.asarray(matches)
    if arr.size == 0:
        return np.zeros((0, 2), dtype=np.int64)
    if arr.dtype.kind not in "iu":
        raise MalformedMatchesError(
            f"Matches of pair {pair} ({desc}) must be integer indices, got dtype {arr.dtype}",
            pair=pair,
        )
    arr = arr.astype(np.int64, copy=False)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise MalformedMatchesError(
            f"Matches of pair {pair} ({desc}) must be (N, 2), got shape {arr.shape}", pair=pair
        )
    if (arr < 0).any():
        raise MalformedMatchesError(f"Negative feature index in pair {pair} ({desc})", pair=pair)
    return arr


def normalize_matches(pairwise_matches: PairwiseMatches) -> List[_MatchBlock]:
    """
    Flatten pairwise matches into blocks visited in a canonical order
    (sorted view pair, then sorted describer type).

    Keys naming the same describer type ("sift", "SIFT", DescriberType.SIFT)
    are merged into one block, in key order.
    """
    blocks: List[_MatchBlock] = []
    for pair in sorted(pairwise_matches, key=lambda p: (int(p[0]), int(p[1]))):
        i, j = int(pair[0]), int(pair[1])
        per_desc: Dict[DescriberType, List[np.ndarray]] = {}
        for d, m in pairwise_matches[pair].items():
            desc = DescriberType.parse(d)
            per_desc.setdefault(desc, []).append(_as_match_array(m, (i, j), desc))
        for desc in sorted(per_desc):
            arr = np.vstack(per_desc[desc])
            if len(arr):
                blocks.append((i, j, desc, arr))
    return blocks


def check_feature_bounds(blocks: List[_MatchBlock], feature_counts: FeatureCounts) -> None:
    """Raise MalformedMatchesError if a match references a feature outside [0, count)."""
    counts: Dict[Tuple[int, DescriberType], int] = {}
    for view_id, per_desc in feature_counts.items():
        for desc, n in per_desc.items():
            counts[(int(view_id), DescriberType.parse(desc))] = int(n)

    for i, j, desc, arr in blocks:
        for col, view_id in ((0, i), (1, j)):
            n = counts.get((view_id, desc))
            if n is None:
                raise MalformedMatchesError(
                    f"No feature count for view {view_id} ({desc})", pair=(i, j)
                )
            hi = int(arr[:, col].max())
            if hi >= n:
                raise MalformedMatchesError(
                    f"Feature index {hi} out of range for view {view_id} ({desc}, {n} features)",
                    pair=(i, j),
                )


class TracksBuilder:
    """
    Staged track builder: build -> filter (optional, repeatable) -> export.

    Stages called out of order raise TracksBuilderStateError.
    """

    def __init__(self, logger=None):
        self.logger = get_logger(logger)
        self.phase = BuilderPhase.EMPTY
        self.stats = TrackBuildStats()
        self._graph: Optional[CorrespondenceGraph] = None

    def _require(self, allowed, action: str) -> None:
        if self.phase not in allowed:
            raise TracksBuilderStateError(
                f"Cannot {action} while builder is '{self.phase.value}'"
            )

    def reset(self) -> None:
        self.phase = BuilderPhase.EMPTY
        self.stats = TrackBuildStats()
        self._graph = None

    # =========================================================
    # Build
    # =========================================================

    def build(
        self,
        pairwise_matches: PairwiseMatches,
        feature_counts: Optional[FeatureCounts] = None,
        cancel_event: Optional[Event] = None,
    ) -> None:
        """
        Fuse pairwise matches into connected components.

        Args:
            pairwise_matches: {(view_i, view_j): {desc_type: [(feat_i, feat_j), ...]}}
            feature_counts: Optional {view_id: {desc_type: n_features}}; when given,
                feature indices are bounds-checked before anything is built.
            cancel_event: Checked once per view pair. On cancel the builder is reset.
        """
        self._require((BuilderPhase.EMPTY,), "build")

        blocks = normalize_matches(pairwise_matches)
        if feature_counts is not None:
            check_feature_bounds(blocks, feature_counts)

        # pass 1: one node per distinct observation, in first-seen order
        keys: List[IndexedFeaturePair] = []
        seen: Dict[IndexedFeaturePair, int] = {}
        for i, j, desc, arr in blocks:
            if cancel_event is not None and cancel_event.is_set():
                raise TracksBuildCancelled("Track build cancelled")
            for a, b in arr.tolist():
                for key in ((i, KeypointId(desc, a)), (j, KeypointId(desc, b))):
                    if key not in seen:
                        seen[key] = len(keys)
                        keys.append(key)

        graph = CorrespondenceGraph(keys, node_of=seen)

        # pass 2: union matched nodes
        node_of = graph.node_of
        n_matches = 0
        for i, j, desc, arr in blocks:
            if cancel_event is not None and cancel_event.is_set():
                self.reset()
                raise TracksBuildCancelled("Track build cancelled")
            for a, b in arr.tolist():
                graph.union(node_of[(i, KeypointId(desc, a))], node_of[(j, KeypointId(desc, b))])
            n_matches += len(arr)

        graph.freeze()

        self._graph = graph
        self.phase = BuilderPhase.BUILT
        self.stats = TrackBuildStats(
            num_pairs=len({(i, j) for i, j, _, _ in blocks}),
            num_matches=n_matches,
            num_observations=len(graph),
            components_built=len(graph.components),
        )
        self.logger.info(
            f"[tracks] build: pairs={self.stats.num_pairs} matches={n_matches} "
            f"observations={len(graph)} components={len(graph.components)}"
        )

    def nb_tracks(self) -> int:
        """Number of live connected components (candidate tracks)."""
        if self._graph is None:
            return 0
        return self._graph.num_live()

    component_count = nb_tracks

    # =========================================================
    # Filter
    # =========================================================

    def filter(
        self,
        clear_forks: bool = True,
        min_track_length: int = 2,
        multithreaded: bool = True,
        num_workers: Optional[int] = None,
        min_components_per_worker: int = 1,
        cancel_event: Optional[Event] = None,
    ) -> int:
        """
        Remove bad components: forks (if clear_forks) and components seen in
        fewer than min_track_length distinct views.

        Returns the number of components discarded by this call.
        """
        self._require((BuilderPhase.BUILT, BuilderPhase.FILTERED), "filter")
        if int(min_track_length) < 1:
            raise ValueError(f"min_track_length must be >= 1, got {min_track_length}")

        workers = FilterConfig(multithreaded=multithreaded, num_workers=num_workers).resolved_num_workers()
        forks, short = find_discarded_components(
            self._graph,
            clear_forks=clear_forks,
            min_track_length=int(min_track_length),
            num_workers=workers,
            min_components_per_worker=min_components_per_worker,
            cancel_event=cancel_event,
            logger=self.logger,
        )

        # single-threaded apply
        self._graph.discard(forks)
        self._graph.discard(short)
        self.phase = BuilderPhase.FILTERED

        self.stats.discarded_forks += len(forks)
        self.stats.discarded_short += len(short)
        self.stats.components_kept = self._graph.num_live()
        self.logger.info(
            f"[tracks] filter: clear_forks={clear_forks} min_track_length={min_track_length} "
            f"workers={workers} discarded_forks={len(forks)} discarded_short={len(short)} "
            f"kept={self.stats.components_kept}"
        )
        return len(forks) + len(short)

    def filter_with_config(self, config: FilterConfig, cancel_event: Optional[Event] = None) -> int:
        return self.filter(
            clear_forks=config.clear_forks,
            min_track_length=config.min_track_length,
            multithreaded=config.multithreaded,
            num_workers=config.num_workers,
            min_components_per_worker=config.min_components_per_worker,
            cancel_event=cancel_event,
        )

    # =========================================================
    # Export
    # =========================================================

    def _live_tracks(self) -> Tuple[TracksMap, int]:
        """Build {track_id: Track} from live components; also return the collapsed count."""
        graph = self._graph

        tracks: TracksMap = {}
        collapsed = 0
        for track_id, ci in enumerate(graph.live_components()):
            nodes = graph.components[ci]
            desc_codes = np.unique(graph.desc_of[nodes])
            if desc_codes.size != 1:
                names = [graph.desc_types[int(c)].value for c in desc_codes]
                raise TrackDescriberTypeError(
                    f"Component {ci} mixes describer types {names}"
                )

            obs: Dict[int, int] = {}
            for v, f in zip(graph.view_of[nodes].tolist(), graph.feat_of[nodes].tolist()):
                if v in obs:
                    collapsed += 1
                    continue
                obs[v] = f

            tracks[track_id] = Track(
                desc_type=graph.desc_types[int(desc_codes[0])],
                obs=dict(sorted(obs.items())),
            )
        return tracks, collapsed

    def export_to_map(self) -> TracksMap:
        """
        Export live components as {track_id: Track}.

        Track ids are 0..n-1 in order of each component's first-seen
        observation. If forks were kept, the first-seen feature of a view wins.
        """
        self._require((BuilderPhase.BUILT, BuilderPhase.FILTERED), "export")
        tracks, collapsed = self._live_tracks()

        if collapsed:
            self.logger.debug(f"[tracks] export: {collapsed} forked observations dropped")
        self.stats.num_tracks = len(tracks)
        self.logger.info(f"[tracks] export: tracks={len(tracks)}")
        return tracks

    def export_to_stream(self, stream: TextIO) -> bool:
        """
        Write one line per track, in increasing track id:
            <n_views> <view_id> <feat_id> <view_id> <feat_id> ...

        Leaves stats and the log untouched.
        """
        self._require((BuilderPhase.BUILT, BuilderPhase.FILTERED), "export")
        tracks, _ = self._live_tracks()
        for track_id in sorted(tracks):
            track = tracks[track_id]
            parts = [str(len(track.obs))]
            for view_id, feat_id in track.obs.items():
                parts.append(f"{view_id} {feat_id}")
            stream.write(" ".join(parts) + "\n")
        return True


def build_tracks(
    pairwise_matches: PairwiseMatches,
    config: Optional[TracksConfig] = None,
    feature_counts: Optional[FeatureCounts] = None,
    cancel_event: Optional[Event] = None,
    logger=None,
) -> Tuple[TracksMap, TrackBuildStats]:
    """
    Build + filter + export in one call.

    feature_counts is only used when config.build.validate_indices is set.
    """
    config = config or TracksConfig()
    config.validate()
    if config.build.validate_indices and feature_counts is None:
        get_logger(logger).warning("[tracks] validate_indices is set but no feature_counts given")

    builder = TracksBuilder(logger=logger)
    builder.build(
        pairwise_matches,
        feature_counts=feature_counts if config.build.validate_indices else None,
        cancel_event=cancel_event,
    )
    builder.filter_with_config(config.filter, cancel_event=cancel_event)
    tracks = builder.export_to_map()
    return tracks, builder.stats
