from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Union

import yaml


def _suffix(path: Path) -> str:
    return path.suffix.lower()


def load_data(path: Union[str, Path]) -> Any:
    """
    Load a file into a Python object based on file extension.

    - .json -> parsed dict/list
    - .yaml/.yml -> parsed dict/list
    - otherwise -> raw text (str)

    This function is domain-neutral: it does NOT interpret the contents.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    suf = _suffix(path)
    text = path.read_text(encoding="utf-8")

    if suf == ".json":
        return json.loads(text)

    if suf in (".yaml", ".yml"):
        return yaml.safe_load(text)

    # default: return raw text
    return text


def save_data(data: Any, path: Union[str, Path]) -> Path:
    """
    Write a dict/list to .json or .yaml/.yml (chosen by extension).

    Parent directories are created.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    suf = _suffix(path)
    if suf == ".json":
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    elif suf in (".yaml", ".yml"):
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    else:
        raise ValueError(f"Unsupported data file extension: {path.suffix!r} (use .json/.yaml)")
    return path
