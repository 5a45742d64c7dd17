from .composition import Composition, GateReport, dialogue_segments, estimate_composition, evaluate
from .refinement import RefinementLoop, RefinementResult
from .style_analyzer import (
    AxisResult,
    QuickCheck,
    Span,
    StyleAnalyzer,
    StyleIssue,
    StyleReport,
    build_style_guidelines,
)

__all__ = [
    "Composition",
    "GateReport",
    "dialogue_segments",
    "estimate_composition",
    "evaluate",
    "RefinementLoop",
    "RefinementResult",
    "AxisResult",
    "QuickCheck",
    "Span",
    "StyleAnalyzer",
    "StyleIssue",
    "StyleReport",
    "build_style_guidelines",
]
