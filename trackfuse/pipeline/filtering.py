"""
trackfuse/pipeline/filtering.py

Component filtering: drop forks (two features of one view fused together)
and components seen in too few distinct views.

Workers only read the components they were handed and return private
discard lists; the caller merges them and applies the result once.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from threading import Event
from typing import List, Optional, Sequence, Tuple

import numpy as np

from trackfuse.exceptions import TracksBuildCancelled
from utils.logging_utils import get_logger

from .state import CorrespondenceGraph

FORK = "fork"
SHORT = "short"


def component_verdict(
    views: np.ndarray,
    clear_forks: bool,
    min_track_length: int,
) -> Optional[str]:
    """
    Decide the fate of one component from the view id of each of its nodes.

    Returns FORK, SHORT or None (keep).
    """
    n_distinct = np.unique(views).size
    if clear_forks and n_distinct < views.size:
        return FORK
    if n_distinct < min_track_length:
        return SHORT
    return None


def _filter_chunk(
    chunk: Sequence[int],
    components: Sequence[np.ndarray],
    view_of: np.ndarray,
    clear_forks: bool,
    min_track_length: int,
    cancel_event: Optional[Event] = None,
) -> Tuple[List[int], List[int]]:
    forks: List[int] = []
    short: List[int] = []
    for ci in chunk:
        if cancel_event is not None and cancel_event.is_set():
            raise TracksBuildCancelled("Track filtering cancelled")
        verdict = component_verdict(view_of[components[ci]], clear_forks, min_track_length)
        if verdict == FORK:
            forks.append(ci)
        elif verdict == SHORT:
            short.append(ci)
    return forks, short


def partition_components(indices: Sequence[int], n_parts: int) -> List[List[int]]:
    """Split component indices into at most n_parts contiguous, non-empty chunks."""
    if len(indices) == 0:
        return []
    n_parts = max(1, min(int(n_parts), len(indices)))
    return [c.tolist() for c in np.array_split(np.asarray(indices, dtype=np.int64), n_parts)]


def find_discarded_components(
    graph: CorrespondenceGraph,
    clear_forks: bool,
    min_track_length: int,
    num_workers: int = 1,
    min_components_per_worker: int = 1,
    cancel_event: Optional[Event] = None,
    logger=None,
) -> Tuple[List[int], List[int]]:
    """
    Scan live components of the graph.

    Returns (fork_components, short_components), both sorted ascending.
    The result does not depend on num_workers.
    """
    logger = get_logger(logger)
    live = graph.live_components()
    if not live:
        return [], []

    # don't spawn threads for a handful of components
    max_useful = max(1, len(live) // max(1, min_components_per_worker))
    n_workers = max(1, min(int(num_workers), max_useful))
    chunks = partition_components(live, n_workers)

    if n_workers == 1:
        results = [
            _filter_chunk(chunks[0], graph.components, graph.view_of,
                          clear_forks, min_track_length, cancel_event)
        ]
    else:
        logger.debug(f"[filter] {len(live)} components over {len(chunks)} workers")
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            results = list(executor.map(
                lambda chunk: _filter_chunk(chunk, graph.components, graph.view_of,
                                            clear_forks, min_track_length, cancel_event),
                chunks,
            ))

    # gather
    forks: List[int] = []
    short: List[int] = []
    for f, s in results:
        forks.extend(f)
        short.extend(s)
    forks.sort()
    short.sort()
    return forks, short
