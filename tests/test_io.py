"""Tests for matches / tracks file formats."""

import sys
import tempfile
import unittest
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from data_io.matches_io import (
    count_matches,
    format_matches_text,
    load_pairwise_matches,
    parse_matches_text,
    save_pairwise_matches,
)
from data_io.parsing import load_data, save_data
from data_io.tracks_io import (
    format_tracks_text,
    load_tracks_json,
    load_tracks_text,
    parse_tracks_text,
    save_tracks_json,
    save_tracks_text,
)
from trackfuse.exceptions import MalformedMatchesError, TrackFuseError
from trackfuse.tracks import DescriberType, Track

MATCHES_TEXT = """0 1
2
akaze 1
5 6
sift 2
0 1
2 3
1 2
1
sift 1
1 4
"""


class TestMatchesIO(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.matches = {
            (0, 1): {"sift": [(0, 1), (2, 3)], "akaze": [(5, 6)]},
            (1, 2): {"sift": [(1, 4)]},
        }

    def tearDown(self):
        self.tmp.cleanup()

    def test_parse_text(self):
        loaded = parse_matches_text(MATCHES_TEXT)
        self.assertEqual(sorted(loaded), [(0, 1), (1, 2)])
        np.testing.assert_array_equal(loaded[(0, 1)][DescriberType.SIFT], [[0, 1], [2, 3]])
        np.testing.assert_array_equal(loaded[(0, 1)][DescriberType.AKAZE], [[5, 6]])
        self.assertEqual(count_matches(loaded), 4)

    def test_format_text(self):
        self.assertEqual(format_matches_text(self.matches), MATCHES_TEXT)
        self.assertEqual(format_matches_text({}), "")

    def test_text_and_json_files(self):
        for name in ("matches.txt", "matches.json", "matches.yaml"):
            path = save_pairwise_matches(self.matches, self.dir / name)
            loaded = load_pairwise_matches(path)
            self.assertEqual(count_matches(loaded), 4, name)
            np.testing.assert_array_equal(loaded[(1, 2)][DescriberType.SIFT], [[1, 4]])

    def test_truncated_text(self):
        with self.assertRaises(MalformedMatchesError):
            parse_matches_text("0 1\n1\nsift 3\n0 1\n")
        with self.assertRaises(MalformedMatchesError):
            parse_matches_text("0 1\n1\nfoo 1\n0 1\n")

    def test_bad_structured_file(self):
        path = self.dir / "bad.json"
        save_data({"matches": []}, path)
        with self.assertRaises(MalformedMatchesError):
            load_pairwise_matches(path)


class TestTracksIO(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.tracks = {
            1: Track(DescriberType.AKAZE, {4: 2}),
            0: Track(DescriberType.SIFT, {2: 9, 0: 3}),
        }

    def tearDown(self):
        self.tmp.cleanup()

    def test_text_format(self):
        text = format_tracks_text(self.tracks)
        self.assertEqual(text, "0 sift 2 0 3 2 9\n1 akaze 1 4 2\n")
        self.assertEqual(parse_tracks_text(text), self.tracks)

    def test_files(self):
        self.assertEqual(load_tracks_text(save_tracks_text(self.tracks, self.dir / "t.txt")), self.tracks)
        self.assertEqual(load_tracks_json(save_tracks_json(self.tracks, self.dir / "t.json")), self.tracks)

    def test_invalid_text(self):
        with self.assertRaises(TrackFuseError):
            parse_tracks_text("0 sift 2 0 3\n")
        with self.assertRaises(TrackFuseError):
            parse_tracks_text("0 sift\n")


class TestParsing(unittest.TestCase):

    def test_load_missing(self):
        with self.assertRaises(FileNotFoundError):
            load_data("/nonexistent/file.json")

    def test_save_unsupported(self):
        with tempfile.TemporaryDirectory() as d:
            with self.assertRaises(ValueError):
                save_data({}, Path(d) / "x.csv")

    def test_raw_text(self):
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "x.txt"
            p.write_text("hello")
            self.assertEqual(load_data(p), "hello")


if __name__ == "__main__":
    unittest.main()
