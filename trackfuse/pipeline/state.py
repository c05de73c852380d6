"""
trackfuse/pipeline/state.py

Holds the transient correspondence-graph state used while building tracks,
and the final result containers.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from trackfuse.tracks import (
    DescriberType,
    IndexedFeaturePair,
    TracksMap,
    TracksPerView,
    UnionFind,
)


class BuilderPhase(str, Enum):
    EMPTY = "empty"
    BUILT = "built"
    FILTERED = "filtered"


@dataclass
class TrackBuildStats:
    """Counters collected while building/filtering/exporting tracks."""
    num_pairs: int = 0
    num_matches: int = 0
    num_observations: int = 0
    components_built: int = 0
    discarded_forks: int = 0
    discarded_short: int = 0
    components_kept: int = 0
    num_tracks: int = 0

    def summary(self) -> str:
        return (
            f"[tracks] pairs={self.num_pairs} matches={self.num_matches} "
            f"observations={self.num_observations} components={self.components_built} "
            f"discarded_forks={self.discarded_forks} discarded_short={self.discarded_short} "
            f"tracks_kept={self.num_tracks}"
        )


class CorrespondenceGraph:
    """
    Node registry + union-find forest.

    Node ids are dense integers assigned in first-seen order. Per-node view,
    describer type and feature index are stored in parallel arrays so a
    component's observations can be read with fancy indexing.

    Usage:
        graph = CorrespondenceGraph.from_keys(keys)
        graph.union(graph.node_of[key_a], graph.node_of[key_b])
    """

    def __init__(
        self,
        keys: List[IndexedFeaturePair],
        node_of: Optional[Dict[IndexedFeaturePair, int]] = None,
    ):
        self.node_to_key: List[IndexedFeaturePair] = keys
        if node_of is None:
            node_of = {k: i for i, k in enumerate(keys)}
        self.node_of: Dict[IndexedFeaturePair, int] = node_of

        n = len(keys)
        self.view_of = np.fromiter((k[0] for k in keys), dtype=np.int64, count=n)
        self.feat_of = np.fromiter((k[1].feat_index for k in keys), dtype=np.int64, count=n)

        # describer types stored as small codes into self.desc_types
        self.desc_types: List[DescriberType] = sorted({k[1].desc_type for k in keys})
        code = {d: i for i, d in enumerate(self.desc_types)}
        self.desc_of = np.fromiter((code[k[1].desc_type] for k in keys), dtype=np.int32, count=n)

        self.uf = UnionFind(n)

        # filled by freeze()
        self.components: List[np.ndarray] = []
        self.alive: np.ndarray = np.zeros(0, dtype=bool)

    def __len__(self) -> int:
        return len(self.node_to_key)

    def union(self, a: int, b: int) -> bool:
        return self.uf.union(a, b)

    def freeze(self) -> None:
        """Snapshot connected components; every component starts alive."""
        self.components = self.uf.components()
        self.alive = np.ones(len(self.components), dtype=bool)

    def live_components(self) -> List[int]:
        return np.flatnonzero(self.alive).tolist()

    def num_live(self) -> int:
        return int(self.alive.sum())

    def discard(self, component_indices) -> None:
        idx = np.asarray(list(component_indices), dtype=np.int64)
        if idx.size:
            self.alive[idx] = False


@dataclass
class TracksResult:
    """Final output of the track building pipeline."""
    tracks: TracksMap
    tracks_per_view: TracksPerView
    stats: TrackBuildStats
    config: Optional[object] = None
    summary: Dict[str, object] = field(default_factory=dict)

    @property
    def num_tracks(self) -> int:
        return len(self.tracks)
