"""
scripts/run_tracks.py

Build multi-view tracks from a pairwise matches file.
Uses the config system - all parameters in one place.
"""

import argparse
import sys
from pathlib import Path

from data_io.matches_io import load_pairwise_matches
from data_io.tracks_io import save_tracks_json, save_tracks_text
from trackfuse.pipeline import TracksConfig, get_default_config, load_config
from trackfuse.run_tracks import run_track_building
from utils.checkpoint import checkpoint_exists, load_checkpoint, save_checkpoint
from utils.logging_utils import make_logger

EXPORT_FORMATS = ["text", "json"]


def build_config_from_args(args) -> TracksConfig:
    """
    Build TracksConfig from command line arguments.

    Starts from the config file (or the default preset),
    then overrides with any explicitly provided arguments.
    """
    config = load_config(args.config) if args.config else get_default_config()

    if args.min_track_length is not None:
        config.filter.min_track_length = args.min_track_length
    if args.keep_forks:
        config.filter.clear_forks = False
    if args.workers is not None:
        config.filter.num_workers = args.workers
    if args.single_thread:
        config.filter.multithreaded = False
    if args.out_dir is not None:
        config.diagnostics.out_dir = args.out_dir
    if args.verbose:
        config.verbose = True
    if args.quiet:
        config.verbose = False

    config.validate()
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="TrackFuse: fuse pairwise matches into multi-view tracks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default: remove forks, keep tracks seen in 2+ views
  python -m scripts.run_tracks --matches out/matches.txt --out_dir out/tracks

  # 3+ views, 8 filter workers, text + json export
  python -m scripts.run_tracks --matches out/matches.json --min_track_length 3 --workers 8 --export text json --out_dir out/tracks
        """,
    )

    # =========================================================
    # INPUT
    # =========================================================
    parser.add_argument("--matches", type=str, required=True,
                        help="Pairwise matches file (.json/.yaml or text)")
    parser.add_argument("--config", type=str, default=None,
                        help="Optional TracksConfig file (.json/.yaml)")

    # =========================================================
    # FILTER
    # =========================================================
    parser.add_argument("--min_track_length", type=int, default=None,
                        help="Minimum number of distinct views per track")
    parser.add_argument("--keep_forks", action="store_true",
                        help="Do not remove tracks with two features in one view")
    parser.add_argument("--workers", type=int, default=None,
                        help="Number of filter worker threads (default: CPU count)")
    parser.add_argument("--single_thread", action="store_true",
                        help="Filter on the calling thread only")

    # =========================================================
    # OUTPUT
    # =========================================================
    parser.add_argument("--out_dir", type=str, default=None,
                        help="Output directory for tracks and diagnostics")
    parser.add_argument("--export", type=str, nargs="*", default=[], choices=EXPORT_FORMATS,
                        help="Extra export formats written to --out_dir")
    parser.add_argument("--checkpoint", action="store_true",
                        help="Reuse/save <out_dir>/tracks_result.pkl")
    log_group = parser.add_mutually_exclusive_group()
    log_group.add_argument("--verbose", action="store_true",
                           help="Log stage progress (overrides a config file with verbose: false)")
    log_group.add_argument("--quiet", action="store_true",
                           help="Only log warnings and errors")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = build_config_from_args(args)
    logger = make_logger("trackfuse", level=(20 if config.verbose else 40))

    out_dir = Path(args.out_dir) if args.out_dir else None
    if (args.export or args.checkpoint) and out_dir is None:
        logger.error("--export and --checkpoint need --out_dir")
        return 2

    ckpt_path = out_dir / "tracks_result.pkl" if out_dir is not None else None
    if args.checkpoint and checkpoint_exists(ckpt_path):
        result = load_checkpoint(ckpt_path, logger=logger)
    else:
        matches = load_pairwise_matches(args.matches)
        result = run_track_building(matches, config=config)
        if args.checkpoint:
            save_checkpoint(result, ckpt_path, logger=logger)

    for fmt in args.export:
        if fmt == "text":
            p = save_tracks_text(result.tracks, out_dir / "tracks_export.txt")
        else:
            p = save_tracks_json(result.tracks, out_dir / "tracks.json")
        logger.info(f"Exported {fmt}: {p}")

    print(f"Tracks: {result.num_tracks}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
