# utils/checkpoint.py
from __future__ import annotations

import pickle
from pathlib import Path
from typing import Any

from utils.logging_utils import get_logger


def save_checkpoint(data: Any, path: Path, logger=None) -> None:
    """Pickle a pipeline result (e.g. TracksResult) to path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        pickle.dump(data, f, protocol=pickle.HIGHEST_PROTOCOL)
    get_logger(logger).info(f"[checkpoint] saved: {path}")


def load_checkpoint(path: Path, logger=None) -> Any:
    path = Path(path)
    with open(path, "rb") as f:
        data = pickle.load(f)
    get_logger(logger).info(f"[checkpoint] loaded: {path}")
    return data


def checkpoint_exists(path: Path) -> bool:
    return Path(path).exists()
