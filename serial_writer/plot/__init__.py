from .arc_manager import (
    ARC_THEMES,
    ChapterObjectives,
    ChapterUpdate,
    PlotArcManager,
    pacing_for,
    slugify,
)

__all__ = [
    "ARC_THEMES",
    "ChapterObjectives",
    "ChapterUpdate",
    "PlotArcManager",
    "pacing_for",
    "slugify",
]
