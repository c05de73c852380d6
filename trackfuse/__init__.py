"""Multi-view feature tracks from pairwise matches.

Fuses pairwise feature correspondences into tracks with a union-find
forest, removes conflicting / short tracks, and offers fast per-view
queries over the result.
"""

from __future__ import annotations

__version__ = "0.1.0"
