"""
trackfuse/tracks.py

Core track data model: describer types, keypoint ids, tracks and the
union-find forest used to fuse pairwise matches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, NamedTuple, Sequence, Tuple, Union

import numpy as np


class DescriberType(str, Enum):
    """Feature extractor that produced an observation."""

    UNINITIALIZED = "uninitialized"
    UNKNOWN = "unknown"
    SIFT = "sift"
    SIFT_FLOAT = "sift_float"
    SIFT_UPRIGHT = "sift_upright"
    AKAZE = "akaze"
    AKAZE_LIOP = "akaze_liop"
    AKAZE_MLDB = "akaze_mldb"
    CCTAG3 = "cctag3"
    CCTAG4 = "cctag4"
    SIFT_OCV = "sift_ocv"
    AKAZE_OCV = "akaze_ocv"
    ORB = "orb"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Union[str, "DescriberType"]) -> "DescriberType":
        """Accept enum members or (case-insensitive) names/values."""
        if isinstance(value, cls):
            return value
        s = str(value).strip().lower()
        try:
            return cls(s)
        except ValueError:
            raise ValueError(
                f"Unknown describer type: {value!r}. "
                f"Use one of {', '.join(m.value for m in cls)}"
            ) from None


class KeypointId(NamedTuple):
    """A feature in one view: (describer type, feature index).

    Ordered by describer type first, then by feature index. Describer types
    compare by their string value (alphabetically), not by declaration order.
    """
    desc_type: DescriberType
    feat_index: int

    def __str__(self) -> str:
        return f"{self.desc_type.value}, {self.feat_index}"


# (view_id, KeypointId): one node of the correspondence graph
IndexedFeaturePair = Tuple[int, KeypointId]

# (feature index in view I, feature index in view J)
IndMatch = Tuple[int, int]

# (describer type, feature index) as returned by per-view lookups
FeatureId = Tuple[DescriberType, int]

MatchesPerDescType = Mapping[Union[str, DescriberType], Union[Sequence[IndMatch], np.ndarray]]
PairwiseMatches = Mapping[Tuple[int, int], MatchesPerDescType]


@dataclass
class Track:
    """A multi-view track: describer type + mapping view_id -> feature index."""
    desc_type: DescriberType = DescriberType.UNINITIALIZED
    obs: Dict[int, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.obs)

    @property
    def views(self) -> List[int]:
        return sorted(self.obs)


# track_id -> Track, iterated in increasing track id
TracksMap = Dict[int, Track]

# view_id -> ascending int64 array of visible track ids
TracksPerView = Dict[int, np.ndarray]

# view_id -> {track_id * depth + level: pyramid cell index}
TracksPyramidPerView = Dict[int, Dict[int, int]]


class UnionFind:
    """
    Disjoint-set forest over integer node ids [0, n).

    Union by rank + path halving keeps find() near O(1) amortized.
    """

    def __init__(self, n: int):
        self.parent = np.arange(n, dtype=np.int64)
        self.rank = np.zeros(n, dtype=np.int64)
        self.num_sets = int(n)

    def __len__(self) -> int:
        return int(self.parent.shape[0])

    def find(self, a: int) -> int:
        parent = self.parent
        while parent[a] != a:
            parent[a] = parent[parent[a]]
            a = parent[a]
        return int(a)

    def union(self, a: int, b: int) -> bool:
        """Merge the sets of a and b. Returns False if already merged."""
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return False
        if self.rank[ra] < self.rank[rb]:
            self.parent[ra] = rb
        elif self.rank[ra] > self.rank[rb]:
            self.parent[rb] = ra
        else:
            self.parent[rb] = ra
            self.rank[ra] += 1
        self.num_sets -= 1
        return True

    def connected(self, a: int, b: int) -> bool:
        return self.find(a) == self.find(b)

    def roots(self) -> np.ndarray:
        """Root of every node, computed by pointer jumping over the whole forest.

        Also fully compresses the forest.
        """
        parent = self.parent
        while True:
            grand = parent[parent]
            if np.array_equal(grand, parent):
                break
            parent = grand
        self.parent = parent.copy()
        return parent

    def components(self) -> List[np.ndarray]:
        """
        Group node ids by set.

        Each component is an ascending array of node ids; components are
        ordered by their smallest node id.
        """
        if len(self) == 0:
            return []
        roots = self.roots()
        order = np.argsort(roots, kind="stable")
        sorted_roots = roots[order]
        cuts = np.flatnonzero(np.diff(sorted_roots)) + 1
        groups = np.split(order, cuts)
        # stable argsort keeps node ids ascending inside each group
        groups.sort(key=lambda g: int(g[0]))
        return groups
