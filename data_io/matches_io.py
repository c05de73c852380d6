"""
data_io/matches_io.py

Read/write pairwise matches produced by an upstream matcher.

Supported formats:
- .json / .yaml:
    {"pairs": [{"views": [0, 1], "matches": {"sift": [[12, 40], [13, 41]]}}]}
- anything else, plain text, one block per view pair:
    I J
    <number of describer types>
    <describer type> <number of matches>
    <feat_i> <feat_j>
    ...

Usage:
    from data_io.matches_io import load_pairwise_matches
    matches = load_pairwise_matches("matches/matches.txt")
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, List, Tuple, Union

import numpy as np

from data_io.parsing import load_data, save_data
from trackfuse.exceptions import MalformedMatchesError
from trackfuse.tracks import DescriberType, PairwiseMatches

LoadedMatches = Dict[Tuple[int, int], Dict[DescriberType, np.ndarray]]

STRUCTURED_SUFFIXES = (".json", ".yaml", ".yml")


def _match_array(values, pair) -> np.ndarray:
    arr = np.asarray(values)
    if arr.size == 0:
        return np.zeros((0, 2), dtype=np.int64)
    if arr.dtype.kind not in "iu":
        raise MalformedMatchesError(f"Matches of pair {pair} must be integer indices", pair=pair)
    arr = arr.astype(np.int64, copy=False)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise MalformedMatchesError(f"Matches of pair {pair} must be pairs of indices", pair=pair)
    return arr


def matches_from_dict(data: dict) -> LoadedMatches:
    """Parse the {"pairs": [...]} layout."""
    if not isinstance(data, dict) or not isinstance(data.get("pairs"), list):
        raise MalformedMatchesError("Matches file must contain a 'pairs' list")

    out: LoadedMatches = {}
    for entry in data["pairs"]:
        try:
            i, j = (int(v) for v in entry["views"])
            per_desc = entry["matches"]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedMatchesError(f"Invalid pair entry: {entry!r}") from e

        pair = (i, j)
        dst = out.setdefault(pair, {})
        for desc, values in per_desc.items():
            d = DescriberType.parse(desc)
            arr = _match_array(values, pair)
            dst[d] = np.vstack([dst[d], arr]) if d in dst else arr
    return out


def matches_to_dict(matches: PairwiseMatches) -> dict:
    pairs = []
    for (i, j) in sorted(matches):
        per_desc = {}
        for desc, values in matches[(i, j)].items():
            d = DescriberType.parse(desc)
            per_desc[d.value] = _match_array(values, (i, j)).tolist()
        pairs.append({"views": [int(i), int(j)], "matches": per_desc})
    return {"pairs": pairs}


def _lines(text: str) -> Iterator[List[str]]:
    for line in text.splitlines():
        tokens = line.split()
        if tokens:
            yield tokens


def parse_matches_text(text: str) -> LoadedMatches:
    out: LoadedMatches = {}
    lines = _lines(text)
    for header in lines:
        try:
            i, j = int(header[0]), int(header[1])
            n_types = int(next(lines)[0])
            pair = (i, j)
            dst = out.setdefault(pair, {})
            for _ in range(n_types):
                desc_tokens = next(lines)
                d = DescriberType.parse(desc_tokens[0])
                n_matches = int(desc_tokens[1])
                rows = [next(lines)[:2] for _ in range(n_matches)]
                arr = _match_array([[int(a), int(b)] for a, b in rows], pair)
                dst[d] = np.vstack([dst[d], arr]) if d in dst else arr
        except (StopIteration, IndexError, ValueError) as e:
            raise MalformedMatchesError(f"Truncated or invalid matches block after {header}") from e
    return out


def format_matches_text(matches: PairwiseMatches) -> str:
    chunks = []
    for (i, j) in sorted(matches):
        per_desc = matches[(i, j)]
        chunks.append(f"{int(i)} {int(j)}")
        chunks.append(str(len(per_desc)))
        for desc in sorted(per_desc, key=lambda d: DescriberType.parse(d).value):
            arr = _match_array(per_desc[desc], (i, j))
            chunks.append(f"{DescriberType.parse(desc).value} {len(arr)}")
            chunks.extend(f"{a} {b}" for a, b in arr.tolist())
    return "\n".join(chunks) + ("\n" if chunks else "")


def load_pairwise_matches(path: Union[str, Path]) -> LoadedMatches:
    path = Path(path)
    data = load_data(path)
    if path.suffix.lower() in STRUCTURED_SUFFIXES:
        return matches_from_dict(data)
    return parse_matches_text(data)


def save_pairwise_matches(matches: PairwiseMatches, path: Union[str, Path]) -> Path:
    path = Path(path)
    if path.suffix.lower() in STRUCTURED_SUFFIXES:
        return save_data(matches_to_dict(matches), path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_matches_text(matches), encoding="utf-8")
    return path


def count_matches(matches: PairwiseMatches) -> int:
    return sum(len(v) for per_desc in matches.values() for v in per_desc.values())
