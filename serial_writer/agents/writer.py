"""Writer agent: render an outline into chapter prose."""

from loguru import logger

from ..client import GenerationClient
from ..genres import GenreProfile
from ..memory import ContextPayload
from ..models import ChapterOutline, Project
from ..utils.text import clean_content, count_words, truncate_text
from .architect import render_outline
from .base import AgentRole, AgentSpec, language_name, run_agent

SYSTEM = """You are the lead writer of a long-running web serial. You write vivid, engaging prose that keeps readers coming back. Your writing features:
- Natural, distinctive character dialogue carrying a large share of each scene
- Concrete sensory detail instead of abstract summary
- Varied sentence structure and pacing that follows the outline's tension
- Show-don't-tell: emotions through action, dialogue and body language
- Strict continuity with the story context you are given

Write the chapter as continuous prose. Do not include chapter headers, author notes, or meta-commentary. Just write the story."""

CONTINUE_SYSTEM = """You are continuing a chapter of a web serial that was cut short.
Pick up exactly where the text stops, in the same voice and tense, and carry the chapter through its remaining scenes to the cliffhanger.
Output only the continuation, never repeat what is already written."""

SPEC = AgentSpec(role=AgentRole.WRITER, system_prompt=SYSTEM, temperature=0.8)
CONTINUE_SPEC = AgentSpec(role=AgentRole.WRITER, system_prompt=CONTINUE_SYSTEM, temperature=0.8)


def build_prompt(
    project: Project,
    outline: ChapterOutline,
    context: ContextPayload,
    genre: GenreProfile,
    rewrite_notes: list[str] | None = None,
) -> str:
    target = outline.target_word_count or project.settings.target_word_count
    prompt = f"## Chapter {outline.chapter_number} Outline\n{render_outline(outline)}\n"
    prompt += f"\n## Genre\n{genre.prompt_block()}\n"
    prompt += f"\n{context.render()}\n"
    if rewrite_notes:
        prompt += "\n## Revision Instructions\n" + "\n".join(f"- {n}" for n in rewrite_notes) + "\n"
        prompt += "Rewrite the chapter from scratch, addressing every instruction above.\n"
    prompt += (
        f"\nWrite the full chapter in {language_name(project.language)}, about {target} words. "
        f"Cover every scene in order and end on the cliffhanger."
    )
    return prompt


def build_continuation_prompt(outline: ChapterOutline, text: str, missing_words: int) -> str:
    remaining = [s for s in outline.scenes if s.resolution or s.goal]
    scenes = "\n".join(f"- Scene {s.order}: {s.goal}" for s in remaining[-3:])
    return (
        f"## Outline Reminder\nTitle: {outline.title}\n{scenes}\nCliffhanger: {outline.cliffhanger}\n\n"
        f"## Text So Far (ending)\n{truncate_text(text, 3000, from_end=True)}\n\n"
        f"Continue for at least {missing_words} more words."
    )


async def write_chapter(
    client: GenerationClient,
    project: Project,
    outline: ChapterOutline,
    context: ContextPayload,
    genre: GenreProfile,
    rewrite_notes: list[str] | None = None,
    continuation_ratio: float = 0.7,
) -> str:
    """Draft the chapter, with at most one continuation request.

    The continuation is sent when the draft was cut off by the output limit
    or falls under `continuation_ratio` of the target length.
    """
    target = outline.target_word_count or project.settings.target_word_count
    settings = project.settings
    result = await run_agent(
        client,
        SPEC,
        build_prompt(project, outline, context, genre, rewrite_notes),
        model=settings.model,
        temperature=settings.temperature,
        label="writer",
    )
    text = clean_content(result.text)
    words = count_words(text)

    if result.truncated or words < target * continuation_ratio:
        logger.info(
            f"Chapter {outline.chapter_number} draft has {words}/{target} words"
            f"{' (truncated)' if result.truncated else ''}, requesting continuation"
        )
        more = await run_agent(
            client,
            CONTINUE_SPEC,
            build_continuation_prompt(outline, text, max(target - words, 0)),
            model=settings.model,
            temperature=settings.temperature,
            label="writer:continue",
        )
        continuation = clean_content(more.text)
        if continuation:
            text = f"{text}\n\n{continuation}"
            words = count_words(text)

    logger.info(f"Chapter {outline.chapter_number} drafted: {words} words")
    return text
