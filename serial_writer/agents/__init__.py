from .analyst import analyze_chapter, fallback_analysis, parse_analysis
from .architect import fallback_outline, normalize_outline, parse_outline, plan_chapter, render_outline
from .base import AgentRole, AgentSpec, as_bool, run_agent, run_agent_json
from .critic import parse_report, review_chapter
from .writer import write_chapter

__all__ = [
    "analyze_chapter",
    "fallback_analysis",
    "parse_analysis",
    "fallback_outline",
    "normalize_outline",
    "parse_outline",
    "plan_chapter",
    "render_outline",
    "AgentRole",
    "AgentSpec",
    "as_bool",
    "run_agent",
    "run_agent_json",
    "parse_report",
    "review_chapter",
    "write_chapter",
]
