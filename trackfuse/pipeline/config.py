"""
trackfuse/pipeline/config.py

All configuration dataclasses for the track building pipeline.
ALL default values live here - no hardcoded numbers elsewhere.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Optional, Union
import os

from data_io.parsing import load_data
from trackfuse.exceptions import ConfigError


@dataclass
class BuildConfig:
    """Parameters for the correspondence graph build."""
    validate_indices: bool = False         # Check feature indices against feature_counts


@dataclass
class FilterConfig:
    """
    Parameters for component filtering.

    clear_forks removes any component holding two features of the same view.
    min_track_length counts DISTINCT views.
    """
    clear_forks: bool = True
    min_track_length: int = 2
    multithreaded: bool = True
    num_workers: Optional[int] = None      # None = os.cpu_count()
    min_components_per_worker: int = 2048  # Below this, extra workers are not spawned

    def resolved_num_workers(self) -> int:
        if not self.multithreaded:
            return 1
        if self.num_workers is not None:
            return max(1, int(self.num_workers))
        return os.cpu_count() or 1


@dataclass
class DiagnosticsConfig:
    """Parameters for reports and text exports."""
    enabled: bool = True
    out_dir: Optional[str] = None
    save_text_export: bool = True          # tracks.txt
    save_report: bool = True               # tracks_report.json


@dataclass
class TracksConfig:
    """
    Master configuration for the track building pipeline.

    Usage:
        config = TracksConfig()
        config.filter.min_track_length = 3
        config.filter.num_workers = 4

        # From a YAML/JSON file
        config = load_config("tracks.yaml")
    """
    build: BuildConfig = field(default_factory=BuildConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)

    # Logging
    verbose: bool = True

    def validate(self) -> None:
        if int(self.filter.min_track_length) < 1:
            raise ConfigError(
                f"filter.min_track_length must be >= 1, got {self.filter.min_track_length}"
            )
        if self.filter.num_workers is not None and int(self.filter.num_workers) < 1:
            raise ConfigError(f"filter.num_workers must be >= 1, got {self.filter.num_workers}")
        if int(self.filter.min_components_per_worker) < 1:
            raise ConfigError(
                "filter.min_components_per_worker must be >= 1, "
                f"got {self.filter.min_components_per_worker}"
            )

    @classmethod
    def from_dict(cls, d: dict) -> "TracksConfig":
        """Create config from dictionary (e.g., loaded from YAML/JSON)."""
        d = dict(d or {})
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")

        config = cls(
            build=_section(BuildConfig, d.get("build"), "build"),
            filter=_section(FilterConfig, d.get("filter"), "filter"),
            diagnostics=_section(DiagnosticsConfig, d.get("diagnostics"), "diagnostics"),
            verbose=bool(d.get("verbose", True)),
        )
        config.validate()
        return config

    def to_dict(self) -> dict:
        """Convert config to dictionary (for saving to YAML/JSON)."""
        return asdict(self)


def _section(section_cls, values: Optional[dict], name: str):
    values = dict(values or {})
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{name}' config: {sorted(unknown)}")
    return section_cls(**values)


def load_config(path: Union[str, Path]) -> TracksConfig:
    """Load a TracksConfig from a .json/.yaml file."""
    data = load_data(path)
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return TracksConfig.from_dict(data)


# ============================================================
# PRESET CONFIGURATIONS
# ============================================================

def get_default_config() -> TracksConfig:
    """Forks removed, tracks seen in at least 2 views, parallel filter."""
    return TracksConfig()


def get_two_view_config() -> TracksConfig:
    """
    Configuration for a single image pair.

    Every surviving track has exactly two observations, which is what
    tracks_to_indexed_matches() expects.
    """
    return TracksConfig(
        filter=FilterConfig(
            clear_forks=True,
            min_track_length=2,
            multithreaded=False,
        ),
        diagnostics=DiagnosticsConfig(enabled=False),
    )


def get_strict_config() -> TracksConfig:
    """Only keep tracks seen in 3+ views (better triangulation support)."""
    return TracksConfig(
        filter=FilterConfig(
            clear_forks=True,
            min_track_length=3,
        ),
    )


def get_debug_config() -> TracksConfig:
    """Single threaded, verbose, everything exported."""
    return TracksConfig(
        build=BuildConfig(validate_indices=True),
        filter=FilterConfig(multithreaded=False),
        diagnostics=DiagnosticsConfig(
            enabled=True,
            save_text_export=True,
            save_report=True,
        ),
        verbose=True,
    )
