from .track_diagnostics import format_track_summary, save_track_report, summarize_tracks

__all__ = ["summarize_tracks", "format_track_summary", "save_track_report"]
