"""
data_io/tracks_io.py

Text and JSON serialization of a TracksMap.

Text layout, one track per line in increasing track id:
    <track_id> <desc_type> <n_views> <view_id> <feat_id> <view_id> <feat_id> ...
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Union

from data_io.parsing import load_data, save_data
from trackfuse.exceptions import TrackFuseError
from trackfuse.tracks import DescriberType, Track, TracksMap


def format_tracks_text(tracks: TracksMap) -> str:
    lines: List[str] = []
    for track_id in sorted(tracks):
        track = tracks[track_id]
        parts = [str(track_id), track.desc_type.value, str(len(track.obs))]
        for view_id in sorted(track.obs):
            parts.append(f"{view_id} {track.obs[view_id]}")
        lines.append(" ".join(parts))
    return "\n".join(lines) + ("\n" if lines else "")


def parse_tracks_text(text: str) -> TracksMap:
    tracks: TracksMap = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        tokens = line.split()
        if not tokens:
            continue
        try:
            track_id = int(tokens[0])
            desc = DescriberType.parse(tokens[1])
            n = int(tokens[2])
            values = [int(t) for t in tokens[3:]]
        except (IndexError, ValueError) as e:
            raise TrackFuseError(f"Invalid track line {lineno}: {line!r}") from e
        if len(values) != 2 * n:
            raise TrackFuseError(
                f"Track line {lineno}: expected {n} observations, got {len(values) / 2:g}"
            )
        obs = dict(zip(values[0::2], values[1::2]))
        tracks[track_id] = Track(desc_type=desc, obs=dict(sorted(obs.items())))
    return dict(sorted(tracks.items()))


def save_tracks_text(tracks: TracksMap, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_tracks_text(tracks), encoding="utf-8")
    return path


def load_tracks_text(path: Union[str, Path]) -> TracksMap:
    return parse_tracks_text(Path(path).read_text(encoding="utf-8"))


def tracks_to_dict(tracks: TracksMap) -> dict:
    return {
        "tracks": [
            {
                "id": int(track_id),
                "desc_type": tracks[track_id].desc_type.value,
                "obs": [[int(v), int(f)] for v, f in sorted(tracks[track_id].obs.items())],
            }
            for track_id in sorted(tracks)
        ]
    }


def tracks_from_dict(data: dict) -> TracksMap:
    tracks: TracksMap = {}
    for entry in data.get("tracks", []):
        obs = {int(v): int(f) for v, f in entry["obs"]}
        tracks[int(entry["id"])] = Track(
            desc_type=DescriberType.parse(entry["desc_type"]),
            obs=dict(sorted(obs.items())),
        )
    return dict(sorted(tracks.items()))


def save_tracks_json(tracks: TracksMap, path: Union[str, Path]) -> Path:
    return save_data(tracks_to_dict(tracks), path)


def load_tracks_json(path: Union[str, Path]) -> TracksMap:
    return tracks_from_dict(load_data(path))
