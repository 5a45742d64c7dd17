"""Architect agent: turn context and objectives into a structured chapter outline."""

import math

from loguru import logger

from ..client import GenerationClient
from ..errors import InvalidOutlineError
from ..genres import GenreProfile
from ..memory import ContextPayload
from ..models import ChapterOutline, Project, SceneOutline
from ..plot import ChapterObjectives
from .base import AgentRole, AgentSpec, language_name, run_agent_json

SYSTEM = """You are the story architect of a long-running web serial. You plan one chapter at a time.
Your outline must:
- Follow the arc objectives and advance the listed plot threads
- Respect every fact in the story context (dead characters stay dead, power levels stay consistent)
- Break the chapter into concrete scenes, each with a goal, a conflict and a resolution
- Plan engagement beats: moments built to produce a strong reader reaction
- End on a cliffhanger that pulls the reader into the next chapter
- Use a fresh title that does not repeat or paraphrase any earlier title

Return JSON with: chapter_number, title, summary, pov, location,
scenes (array of {order, setting, characters, goal, conflict, resolution, estimated_words}),
tension_level (0-100), engagement_beats (array of strings),
emotional_arc ({opening, midpoint, climax, closing}), cliffhanger, target_word_count."""

SPEC = AgentSpec(role=AgentRole.ARCHITECT, system_prompt=SYSTEM, temperature=0.3, max_output_tokens=4096, json_output=True)

MIN_PARSED_SCENES = 3
WORDS_PER_SCENE = 600


def min_scenes(target_words: int) -> int:
    return max(4, math.ceil(target_words / WORDS_PER_SCENE))


def build_prompt(
    project: Project,
    chapter: int,
    context: ContextPayload,
    genre: GenreProfile,
    target_words: int,
    notes: list[str] | None = None,
) -> str:
    prompt = f"## Chapter To Plan\nChapter {chapter} of {project.target_chapters}. "
    prompt += f"Protagonist: {project.protagonist or 'unspecified'}. Language: {language_name(project.language)}.\n"
    prompt += f"Target length: {target_words} words in at least {min_scenes(target_words)} scenes.\n"
    prompt += f"\n## Genre\n{genre.prompt_block()}\n"
    prompt += f"\n{context.render()}\n"
    if notes:
        prompt += "\n## Planning Notes\n" + "\n".join(f"- {n}" for n in notes) + "\n"
    prompt += "\nPlan the chapter now."
    return prompt


def _scene_from(raw: dict, order: int) -> SceneOutline:
    characters = raw.get("characters") or []
    if isinstance(characters, str):
        characters = [c.strip() for c in characters.split(",") if c.strip()]
    try:
        words = int(raw.get("estimated_words") or raw.get("estimatedWords") or 0)
    except (TypeError, ValueError):
        words = 0
    raw_order = raw.get("order")
    if isinstance(raw_order, int) or str(raw_order).isdigit():
        order = int(raw_order)
    return SceneOutline(
        order=order,
        setting=str(raw.get("setting", "")),
        characters=[str(c) for c in characters],
        goal=str(raw.get("goal", "")),
        conflict=str(raw.get("conflict", "")),
        resolution=str(raw.get("resolution", "")),
        estimated_words=max(words, 0),
    )


def filler_scenes(outline: ChapterOutline, count: int, target_words: int, protagonist: str) -> list[SceneOutline]:
    per_scene = target_words // count
    beats = [
        ("Opening", "Re-establish where the previous chapter left off", "An obstacle blocks the way forward"),
        ("Development", "Pursue the chapter goal", "The opposition pushes back harder than expected"),
        ("Escalation", "Commit to a risky choice", "The cost of the choice becomes clear"),
        ("Turn", "Face the consequence", "New information changes the stakes"),
        ("Climax", "Confront the chapter's main obstacle", "Victory comes at a price"),
        ("Hook", "Set up what comes next", "A threat or secret surfaces"),
    ]
    scenes = []
    for i in range(count):
        name, goal, conflict = beats[min(i, len(beats) - 1)]
        scenes.append(SceneOutline(
            order=i + 1,
            setting=outline.location or name,
            characters=[protagonist] if protagonist else [],
            goal=goal if i else f"{goal}: {outline.summary}".strip(": "),
            conflict=conflict,
            resolution=outline.cliffhanger if i == count - 1 else "",
            estimated_words=per_scene,
        ))
    return scenes


def normalize_outline(outline: ChapterOutline, target_words: int, protagonist: str = "") -> ChapterOutline:
    """Enforce scene count and word budget on a parsed outline."""
    if len(outline.scenes) < MIN_PARSED_SCENES:
        logger.warning(
            f"Outline for chapter {outline.chapter_number} had {len(outline.scenes)} scenes, "
            f"generating {min_scenes(target_words)}"
        )
        outline.scenes = filler_scenes(outline, min_scenes(target_words), target_words, protagonist)

    total = sum(s.estimated_words for s in outline.scenes)
    if total < target_words * 0.8:
        if total <= 0:
            for s in outline.scenes:
                s.estimated_words = target_words // len(outline.scenes)
        else:
            scale = target_words / total
            for s in outline.scenes:
                s.estimated_words = round(s.estimated_words * scale)
    outline.target_word_count = target_words
    return outline


def parse_outline(data, chapter: int, target_words: int, protagonist: str = "") -> ChapterOutline:
    if not isinstance(data, dict):
        raise InvalidOutlineError(f"Architect returned {type(data).__name__}, expected an object")
    raw_scenes = data.get("scenes") or []
    if not isinstance(raw_scenes, list):
        raw_scenes = []
    title = str(data.get("title") or "").strip()
    if not title and not raw_scenes:
        raise InvalidOutlineError("Architect outline has neither title nor scenes")

    try:
        tension = int(data.get("tension_level") or data.get("tensionLevel") or 50)
    except (TypeError, ValueError):
        tension = 50
    beats = data.get("engagement_beats") or data.get("dopaminePoints") or []
    arc = data.get("emotional_arc") or data.get("emotionalArc") or {}
    outline = ChapterOutline(
        chapter_number=chapter,
        title=title or f"Chapter {chapter}",
        summary=str(data.get("summary", "")),
        pov=str(data.get("pov", "")),
        location=str(data.get("location", "")),
        scenes=[_scene_from(s, i) for i, s in enumerate(raw_scenes, start=1) if isinstance(s, dict)],
        tension_level=max(0, min(100, tension)),
        engagement_beats=[str(b) if not isinstance(b, dict) else str(b.get("description", b)) for b in beats],
        emotional_arc={str(k): str(v) for k, v in arc.items()} if isinstance(arc, dict) else {},
        cliffhanger=str(data.get("cliffhanger", "")),
    )
    return normalize_outline(outline, target_words, protagonist)


def fallback_outline(
    project: Project,
    chapter: int,
    objectives: ChapterObjectives | None,
    target_words: int,
) -> ChapterOutline:
    """Deterministic outline built from the chapter objectives alone."""
    theme = objectives.arc_theme if objectives else "continuation"
    tension = objectives.tension_target if objectives else 50
    directives = objectives.directives if objectives else []
    threads = objectives.threads_to_advance if objectives else []
    summary = directives[0] if directives else "Continue the story from the previous chapter."
    if threads:
        summary += f" Advance: {threads[0].description}"
    outline = ChapterOutline(
        chapter_number=chapter,
        title=f"{theme.replace('_', ' ').title()} {chapter}",
        summary=summary,
        pov=project.protagonist,
        tension_level=tension,
        cliffhanger="An unexpected threat surfaces at the last moment.",
        is_fallback=True,
    )
    outline.scenes = filler_scenes(outline, min_scenes(target_words), target_words, project.protagonist)
    outline.target_word_count = target_words
    return outline


async def plan_chapter(
    client: GenerationClient,
    project: Project,
    chapter: int,
    context: ContextPayload,
    genre: GenreProfile,
    target_words: int,
    notes: list[str] | None = None,
) -> ChapterOutline:
    """One Architect call. Raises InvalidOutlineError when the reply is unusable."""
    prompt = build_prompt(project, chapter, context, genre, target_words, notes)
    try:
        data, _ = await run_agent_json(client, SPEC, prompt, model=project.settings.model, label="architect")
    except ValueError as e:
        raise InvalidOutlineError(f"Unparseable outline for chapter {chapter}: {e}") from e
    outline = parse_outline(data, chapter, target_words, project.protagonist)
    logger.info(f"Outline for chapter {chapter}: '{outline.title}', {len(outline.scenes)} scenes")
    return outline


def render_outline(outline: ChapterOutline) -> str:
    lines = [f"Title: {outline.title}", f"Summary: {outline.summary}"]
    if outline.pov:
        lines.append(f"POV: {outline.pov}")
    if outline.location:
        lines.append(f"Location: {outline.location}")
    lines.append(f"Tension: {outline.tension_level}/100")
    for s in outline.scenes:
        lines.append(
            f"Scene {s.order} (~{s.estimated_words} words) at {s.setting or 'unspecified'}"
            f" with {', '.join(s.characters) or 'the protagonist'}: goal: {s.goal}; "
            f"conflict: {s.conflict}; resolution: {s.resolution}"
        )
    if outline.engagement_beats:
        lines.append("Engagement beats: " + "; ".join(outline.engagement_beats))
    if outline.emotional_arc:
        lines.append("Emotional arc: " + ", ".join(f"{k}: {v}" for k, v in outline.emotional_arc.items()))
    if outline.cliffhanger:
        lines.append(f"Cliffhanger: {outline.cliffhanger}")
    return "\n".join(lines)
