"""Tests for the staged track builder: build, filter and export."""

import io
import sys
import threading
import unittest
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from trackfuse.exceptions import (
    MalformedMatchesError,
    TrackDescriberTypeError,
    TracksBuildCancelled,
    TracksBuilderStateError,
)
from trackfuse.pipeline import (
    BuilderPhase,
    TracksBuilder,
    TracksConfig,
    build_tracks,
    get_two_view_config,
)
from trackfuse.pipeline.filtering import (
    FORK,
    SHORT,
    component_verdict,
    partition_components,
)
from trackfuse.tracks import DescriberType, Track


def chain_matches():
    """(0,f0) <-> (1,f1) <-> (2,f2)."""
    return {
        (0, 1): {"sift": [(0, 1)]},
        (1, 2): {"sift": [(1, 2)]},
    }


def random_point_matches(rng, n_points=60, n_views=6, p_visible=0.6):
    """
    Matches generated from ground-truth points: each point has one distinct
    feature per view, so no component can fork.
    """
    points = []
    next_feat = [0] * n_views
    for _ in range(n_points):
        obs = {}
        for v in range(n_views):
            if rng.random() < p_visible:
                obs[v] = next_feat[v]
                next_feat[v] += 1
        if len(obs) >= 2:
            points.append(obs)

    matches = {}
    for obs in points:
        views = sorted(obs)
        # spanning chain + a few redundant matches
        for a, b in zip(views[:-1], views[1:]):
            matches.setdefault((a, b), {"sift": []})["sift"].append((obs[a], obs[b]))
        if len(views) >= 3 and rng.random() < 0.5:
            a, b = views[0], views[-1]
            matches.setdefault((a, b), {"sift": []})["sift"].append((obs[a], obs[b]))
    return points, matches


def random_noisy_matches(rng, n_views=6, n_feats=25, n_per_pair=15):
    matches = {}
    for i in range(n_views):
        for j in range(i + 1, n_views):
            m = rng.integers(0, n_feats, size=(n_per_pair, 2))
            matches[(i, j)] = {"sift": m}
    return matches


class TestBuild(unittest.TestCase):

    def test_chain_scenario(self):
        builder = TracksBuilder()
        builder.build(chain_matches())
        self.assertEqual(builder.component_count(), 1)

        builder.filter(False, 2)
        tracks = builder.export_to_map()
        self.assertEqual(len(tracks), 1)
        self.assertEqual(tracks[0].obs, {0: 0, 1: 1, 2: 2})
        self.assertIs(tracks[0].desc_type, DescriberType.SIFT)

    def test_fork_scenario_cleared(self):
        matches = chain_matches()
        matches[(0, 1)]["sift"].append((3, 1))

        builder = TracksBuilder()
        builder.build(matches)
        self.assertEqual(builder.nb_tracks(), 1)
        removed = builder.filter(clear_forks=True, min_track_length=2)
        self.assertEqual(removed, 1)
        self.assertEqual(builder.export_to_map(), {})
        self.assertEqual(builder.stats.discarded_forks, 1)

    def test_single_view_component(self):
        matches = {(0, 0): {"sift": [(4, 5)]}}

        builder = TracksBuilder()
        builder.build(matches)
        builder.filter(False, 2)
        self.assertEqual(builder.export_to_map(), {})

        builder = TracksBuilder()
        builder.build(matches)
        builder.filter(False, 1)
        tracks = builder.export_to_map()
        self.assertEqual(len(tracks), 1)
        # kept fork: first-seen feature of the view wins
        self.assertEqual(tracks[0].obs, {0: 4})

    def test_length_rule(self):
        matches = {
            (0, 1): {"sift": [(0, 0), (1, 1), (2, 2)]},
            (1, 2): {"sift": [(1, 1), (2, 2)]},
            (2, 3): {"sift": [(2, 2)]},
        }
        # track lengths: f0 -> 2 views, f1 -> 3 views, f2 -> 4 views
        for min_len, expected in [(1, 3), (2, 3), (3, 2), (4, 1), (5, 0)]:
            builder = TracksBuilder()
            builder.build(matches)
            builder.filter(True, min_len)
            tracks = builder.export_to_map()
            self.assertEqual(len(tracks), expected, f"min_track_length={min_len}")
            for t in tracks.values():
                self.assertGreaterEqual(len(t.obs), min_len)

    def test_matched_observations_share_track(self):
        rng = np.random.default_rng(7)
        points, matches = random_point_matches(rng)

        builder = TracksBuilder()
        builder.build(matches)
        tracks = builder.export_to_map()

        owner = {}
        for track_id, t in tracks.items():
            for v, f in t.obs.items():
                owner[(v, f)] = track_id

        for (i, j), per_desc in matches.items():
            for a, b in per_desc["sift"]:
                self.assertEqual(owner[(i, a)], owner[(j, b)])

        # transitivity: every ground-truth point is exactly one track
        self.assertEqual(len(tracks), len(points))
        self.assertEqual(
            sorted(sorted(t.obs.items()) for t in tracks.values()),
            sorted(sorted(p.items()) for p in points),
        )

    def test_descriptor_types_kept_apart(self):
        matches = {(0, 1): {"sift": [(0, 0)], "akaze": [(0, 0)]}}
        builder = TracksBuilder()
        builder.build(matches)
        tracks = builder.export_to_map()
        self.assertEqual(len(tracks), 2)
        self.assertEqual(
            sorted(t.desc_type.value for t in tracks.values()), ["akaze", "sift"]
        )

    def test_track_ids_independent_of_dict_order(self):
        a = {(1, 2): {"sift": [(1, 2)]}, (0, 1): {"sift": [(0, 1), (5, 6)]}}
        b = {(0, 1): {"sift": [(0, 1), (5, 6)]}, (1, 2): {"sift": [(1, 2)]}}
        t_a, _ = build_tracks(a)
        t_b, _ = build_tracks(b)
        self.assertEqual(t_a, t_b)

    def test_numpy_matches_accepted(self):
        matches = {(0, 1): {DescriberType.SIFT: np.array([[0, 1], [2, 3]])}}
        tracks, stats = build_tracks(matches)
        self.assertEqual(len(tracks), 2)
        self.assertEqual(stats.num_matches, 2)
        self.assertEqual(stats.num_observations, 4)

    def test_empty_input(self):
        builder = TracksBuilder()
        builder.build({})
        self.assertEqual(builder.nb_tracks(), 0)
        builder.filter(True, 2)
        self.assertEqual(builder.export_to_map(), {})

    def test_same_describer_type_keys_merged(self):
        matches = {(0, 1): {"sift": [(0, 0)], "SIFT": [(5, 5)], " Sift ": [(7, 7)]}}
        builder = TracksBuilder()
        builder.build(matches)
        self.assertEqual(builder.stats.num_matches, 3)
        builder.filter(True, 2)
        tracks = builder.export_to_map()
        self.assertEqual(len(tracks), 3)
        self.assertEqual(
            sorted(t.obs[0] for t in tracks.values()), [0, 5, 7]
        )


class TestBuildErrors(unittest.TestCase):

    def test_out_of_order_calls(self):
        builder = TracksBuilder()
        with self.assertRaises(TracksBuilderStateError):
            builder.filter(True, 2)
        with self.assertRaises(TracksBuilderStateError):
            builder.export_to_map()

        builder.build(chain_matches())
        with self.assertRaises(TracksBuilderStateError):
            builder.build(chain_matches())

        builder.reset()
        self.assertIs(builder.phase, BuilderPhase.EMPTY)
        builder.build(chain_matches())
        self.assertIs(builder.phase, BuilderPhase.BUILT)

    def test_invalid_min_track_length(self):
        builder = TracksBuilder()
        builder.build(chain_matches())
        with self.assertRaises(ValueError):
            builder.filter(True, 0)

    def test_negative_index_rejected(self):
        with self.assertRaises(MalformedMatchesError):
            TracksBuilder().build({(0, 1): {"sift": [(0, -1)]}})

    def test_bad_shape_rejected(self):
        with self.assertRaises(MalformedMatchesError):
            TracksBuilder().build({(0, 1): {"sift": [(0, 1, 2)]}})

    def test_fractional_index_rejected(self):
        with self.assertRaises(MalformedMatchesError):
            TracksBuilder().build({(0, 1): {"sift": [(0.9, 1.5)]}})
        with self.assertRaises(MalformedMatchesError):
            TracksBuilder().build({(0, 1): {"sift": np.array([[0.0, 1.0]])}})

    def test_bounds_check(self):
        counts = {0: {"sift": 4}, 1: {"sift": 2}}
        builder = TracksBuilder()
        builder.build({(0, 1): {"sift": [(3, 1)]}}, feature_counts=counts)
        self.assertEqual(builder.nb_tracks(), 1)

        builder = TracksBuilder()
        with self.assertRaises(MalformedMatchesError) as ctx:
            builder.build({(0, 1): {"sift": [(3, 2)]}}, feature_counts=counts)
        self.assertEqual(ctx.exception.pair, (0, 1))
        self.assertIs(builder.phase, BuilderPhase.EMPTY)

        with self.assertRaises(MalformedMatchesError):
            TracksBuilder().build({(0, 2): {"sift": [(0, 0)]}}, feature_counts=counts)

    def test_mixed_describer_types_detected(self):
        builder = TracksBuilder()
        builder.build({(0, 1): {"sift": [(0, 0)], "akaze": [(5, 5)]}})
        graph = builder._graph
        # corrupt the first node so its component mixes akaze and sift
        sift_code = graph.desc_types.index(DescriberType.SIFT)
        graph.desc_of[0] = sift_code
        with self.assertRaises(TrackDescriberTypeError):
            builder.export_to_map()

    def test_cancel_build(self):
        event = threading.Event()
        event.set()
        builder = TracksBuilder()
        with self.assertRaises(TracksBuildCancelled):
            builder.build(chain_matches(), cancel_event=event)
        self.assertIs(builder.phase, BuilderPhase.EMPTY)

    def test_cancel_filter_keeps_components(self):
        event = threading.Event()
        builder = TracksBuilder()
        builder.build({(0, 0): {"sift": [(4, 5)]}})
        event.set()
        with self.assertRaises(TracksBuildCancelled):
            builder.filter(True, 2, cancel_event=event)
        self.assertEqual(builder.nb_tracks(), 1)


class TestFilter(unittest.TestCase):

    def test_component_verdict(self):
        self.assertEqual(component_verdict(np.array([0, 1, 0]), True, 2), FORK)
        self.assertIsNone(component_verdict(np.array([0, 1, 0]), False, 2))
        self.assertEqual(component_verdict(np.array([0, 0]), False, 2), SHORT)
        self.assertEqual(component_verdict(np.array([3]), True, 2), SHORT)
        self.assertIsNone(component_verdict(np.array([3]), True, 1))

    def test_partition(self):
        chunks = partition_components(list(range(10)), 3)
        self.assertEqual(len(chunks), 3)
        self.assertEqual(sum(chunks, []), list(range(10)))
        self.assertEqual(partition_components([], 4), [])
        self.assertEqual(len(partition_components([1, 2], 8)), 2)

    def test_repeat_filter_never_resurrects(self):
        builder = TracksBuilder()
        builder.build({(0, 1): {"sift": [(0, 0), (1, 1)]}, (1, 2): {"sift": [(1, 1)]}})
        builder.filter(True, 3)
        self.assertEqual(builder.nb_tracks(), 1)
        builder.filter(True, 1)
        self.assertEqual(builder.nb_tracks(), 1)
        self.assertIs(builder.phase, BuilderPhase.FILTERED)


@pytest.mark.parametrize("seed", [0, 1, 2])
@pytest.mark.parametrize("clear_forks", [True, False])
def test_filter_independent_of_worker_count(seed, clear_forks):
    matches = random_noisy_matches(np.random.default_rng(seed))

    results = []
    for workers in (1, 2, 3, 8):
        builder = TracksBuilder()
        builder.build(matches)
        builder.filter(clear_forks, 3, multithreaded=workers > 1, num_workers=workers)
        results.append((builder.export_to_map(), builder.stats.discarded_forks,
                        builder.stats.discarded_short))

    for other in results[1:]:
        assert other == results[0]


def test_no_forks_after_clear():
    matches = random_noisy_matches(np.random.default_rng(11), n_feats=40, n_per_pair=10)
    builder = TracksBuilder()
    builder.build(matches)
    builder.filter(True, 2, num_workers=4)
    tracks = builder.export_to_map()

    # every node of a kept component is exported: no collapse happened
    n_obs_kept = sum(len(t.obs) for t in tracks.values())
    graph = builder._graph
    n_nodes_kept = sum(graph.components[ci].size for ci in graph.live_components())
    assert n_obs_kept == n_nodes_kept
    assert all(len(t.obs) >= 2 for t in tracks.values())


def test_export_to_stream():
    builder = TracksBuilder()
    builder.build({(0, 1): {"sift": [(0, 1), (7, 8)]}, (1, 2): {"sift": [(1, 2)]}})
    builder.filter(True, 2)

    out = io.StringIO()
    assert builder.export_to_stream(out)
    assert out.getvalue() == "3 0 0 1 1 2 2\n2 0 7 1 8\n"

    again = io.StringIO()
    builder.export_to_stream(again)
    assert again.getvalue() == out.getvalue()

    # streaming leaves the export stats alone
    assert builder.stats.num_tracks == 0
    builder.export_to_map()
    assert builder.stats.num_tracks == 2


def test_build_tracks_with_config():
    matches = {
        (0, 1): {"sift": [(0, 0), (1, 1)]},
        (1, 2): {"sift": [(1, 1)]},
    }
    config = TracksConfig()
    config.filter.min_track_length = 3
    config.filter.multithreaded = False
    tracks, stats = build_tracks(matches, config=config)
    assert tracks == {0: Track(DescriberType.SIFT, {0: 1, 1: 1, 2: 1})}
    assert stats.discarded_short == 1
    assert stats.num_tracks == 1

    tracks, _ = build_tracks(matches, config=get_two_view_config())
    assert len(tracks) == 2
