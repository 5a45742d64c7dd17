"""Critic agent: score a refined draft and decide approve or rewrite."""

from loguru import logger

from ..client import GenerationClient
from ..models import ChapterOutline, CriticIssue, CriticReport, Project
from ..quality import GateReport, StyleReport, build_style_guidelines
from ..utils.text import count_words
from .base import AgentRole, AgentSpec, as_bool, run_agent_json

SYSTEM = """You are a demanding senior editor of a web serial read by millions. You judge one chapter at a time.
Score the chapter on:
1. Engagement: does every scene hook the reader, does the ending make them click "next"?
2. Pacing: does the chapter follow its outline's tension without dragging or rushing?
3. Continuity: does it respect the outline and the established facts?
4. Prose: dialogue quality, show-don't-tell, sentence variety.

Return JSON with: overall_score (1-10), engagement_score (1-10), pacing_score (1-10),
issues (array of {type, description, severity: minor|major|critical}),
requires_rewrite (bool), rewrite_instructions (string, empty when no rewrite is needed).
Be fair but keep a high bar: a 6 is publishable, an 8 is excellent."""

SPEC = AgentSpec(role=AgentRole.CRITIC, system_prompt=SYSTEM, temperature=0.2, max_output_tokens=4096, json_output=True)

FAIL_CLOSED_SCORE = 5
REWRITE_SCORE = 3
REWRITE_WORD_RATIO = 0.6
EXCERPT_CHARS = 6000


def build_prompt(
    outline: ChapterOutline,
    text: str,
    style: StyleReport,
    gate: GateReport,
    target_words: int,
) -> str:
    words = count_words(text)
    prompt = f"## Chapter {outline.chapter_number}: {outline.title}\n"
    prompt += f"Planned summary: {outline.summary}\nPlanned cliffhanger: {outline.cliffhanger}\n"
    prompt += f"Length: {words} words (target {target_words}).\n"
    prompt += f"\n## Style Analysis (score {style.score:.0f}/100)\n{build_style_guidelines(style)}\n"
    violations = gate.violations()
    if violations:
        prompt += "\n## Unresolved Quality Gate Violations\n" + "\n".join(f"- {v}" for v in violations) + "\n"
    if len(text) > EXCERPT_CHARS:
        half = EXCERPT_CHARS // 2
        prompt += f"\n## Chapter Text (opening and ending)\n{text[:half]}\n\n[...]\n\n{text[-half:]}\n"
    else:
        prompt += f"\n## Chapter Text\n{text}\n"
    prompt += "\nReview the chapter now."
    return prompt


def _score(value, default: float) -> float:
    try:
        return max(0.0, min(10.0, float(value)))
    except (TypeError, ValueError):
        return default


def parse_report(data, word_ratio: float) -> CriticReport:
    if not isinstance(data, dict):
        raise ValueError(f"Critic returned {type(data).__name__}, expected an object")
    overall = _score(data.get("overall_score", data.get("score")), FAIL_CLOSED_SCORE)
    issues = []
    for raw in data.get("issues") or []:
        if isinstance(raw, dict):
            issues.append(CriticIssue(
                type=str(raw.get("type", "")),
                description=str(raw.get("description", "")),
                severity=str(raw.get("severity", "minor")).lower(),
            ))
        elif raw:
            issues.append(CriticIssue(description=str(raw)))
    return CriticReport(
        overall_score=overall,
        engagement_score=_score(data.get("engagement_score"), overall),
        pacing_score=_score(data.get("pacing_score"), overall),
        issues=issues,
        requires_rewrite=as_bool(data.get("requires_rewrite"), False),
        rewrite_instructions=str(data.get("rewrite_instructions") or ""),
        word_ratio=word_ratio,
    )


async def review_chapter(
    client: GenerationClient,
    project: Project,
    outline: ChapterOutline,
    text: str,
    style: StyleReport,
    gate: GateReport,
    min_score: float,
    min_word_ratio: float = 0.8,
) -> CriticReport:
    """One Critic call. Unparseable replies fail closed rather than approve."""
    target = outline.target_word_count or project.settings.target_word_count
    word_ratio = round(count_words(text) / target, 3) if target else 1.0
    prompt = build_prompt(outline, text, style, gate, target)
    try:
        data, _ = await run_agent_json(client, SPEC, prompt, model=project.settings.model, label="critic")
        report = parse_report(data, word_ratio)
    except ValueError as e:
        logger.warning(f"Critic reply for chapter {outline.chapter_number} unusable ({e}), failing closed")
        report = CriticReport(
            overall_score=FAIL_CLOSED_SCORE,
            engagement_score=FAIL_CLOSED_SCORE,
            pacing_score=FAIL_CLOSED_SCORE,
            word_ratio=word_ratio,
            rewrite_instructions="The previous review could not be read. Tighten the chapter and follow the outline closely.",
        )

    report.style_score = style.score
    report.gate_violations = gate.violations()

    notes = []
    if report.overall_score <= REWRITE_SCORE or word_ratio < REWRITE_WORD_RATIO:
        report.requires_rewrite = True
    if word_ratio < min_word_ratio:
        notes.append(f"The chapter is only {word_ratio:.0%} of the {target}-word target. Write the full length.")
    if notes:
        report.rewrite_instructions = " ".join(filter(None, [report.rewrite_instructions, *notes]))

    report.approved = (
        report.overall_score >= min_score
        and not report.requires_rewrite
        and word_ratio >= min_word_ratio
    )
    logger.info(
        f"Critic: chapter {outline.chapter_number} scored {report.overall_score:g}/10 "
        f"({'approved' if report.approved else 'rejected'}, {word_ratio:.0%} of target)"
    )
    return report
