"""Analyst agent: extract structured facts from an accepted chapter."""

from loguru import logger

from ..client import GenerationClient
from ..errors import ContentBlockedError, RetryExhaustedError
from ..models import ChapterAnalysis, CharacterUpdate, NewThread, PlotThread, Project
from ..utils.text import last_sentence, split_sentences, truncate_text
from .base import AgentRole, AgentSpec, as_bool, run_agent_json

SYSTEM = """You are the continuity keeper of a long-running web serial. After each chapter you record what changed.
Only report facts that the chapter text states or clearly shows. Do not speculate.

Return JSON with:
- summary: 3-5 sentences covering what happened
- key_events: array of short strings
- character_updates: array of {name, power_level, health, emotional_state, alive, relationships (object name -> relation), abilities (array), change}
  (omit fields that did not change; set alive to false only for an on-page death)
- resolved_threads: ids of listed plot threads that this chapter concludes
- advanced_threads: ids of listed plot threads that this chapter moves forward
- new_threads: array of {id, description, priority: critical|main|sub|background, characters}
- cliffhanger: the chapter's closing hook in one sentence"""

SPEC = AgentSpec(role=AgentRole.ANALYST, system_prompt=SYSTEM, temperature=0.1, max_output_tokens=4096, json_output=True)


def build_prompt(chapter: int, title: str, text: str, threads: list[PlotThread], characters: list[str]) -> str:
    prompt = f"## Chapter {chapter}: {title}\n"
    if threads:
        prompt += "\n## Open Plot Threads (use these exact ids)\n"
        prompt += "\n".join(f"- {t.id}: {t.description}" for t in threads) + "\n"
    if characters:
        prompt += f"\n## Known Characters\n{', '.join(characters)}\n"
    prompt += f"\n## Chapter Text\n{truncate_text(text, 24000)}\n\nRecord the chapter now."
    return prompt


def _str_list(value) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _optional_str(raw: dict, key: str) -> str | None:
    value = raw.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _character_update(raw: dict) -> CharacterUpdate | None:
    name = str(raw.get("name") or "").strip()
    if not name:
        return None
    alive = raw.get("alive")
    relationships = raw.get("relationships") or {}
    return CharacterUpdate(
        name=name,
        power_level=_optional_str(raw, "power_level"),
        health=_optional_str(raw, "health"),
        emotional_state=_optional_str(raw, "emotional_state"),
        relationships={str(k): str(v) for k, v in relationships.items()} if isinstance(relationships, dict) else {},
        abilities=_str_list(raw.get("abilities")),
        alive=as_bool(alive),
        change=str(raw.get("change") or ""),
    )


def parse_analysis(data, known_threads: set[str]) -> ChapterAnalysis:
    """Turn the Analyst JSON into a ChapterAnalysis.

    Thread signals naming ids outside `known_threads` are dropped.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Analyst returned {type(data).__name__}, expected an object")
    updates = [
        u for u in (_character_update(r) for r in data.get("character_updates") or [] if isinstance(r, dict))
        if u is not None
    ]
    new_threads = []
    for raw in data.get("new_threads") or []:
        if isinstance(raw, dict) and (raw.get("description") or raw.get("id")):
            new_threads.append(NewThread(
                id=str(raw.get("id") or ""),
                description=str(raw.get("description") or raw.get("id")),
                priority=str(raw.get("priority") or "sub").lower(),
                characters=_str_list(raw.get("characters")),
            ))
    resolved = [t for t in _str_list(data.get("resolved_threads")) if t in known_threads]
    advanced = [
        t for t in _str_list(data.get("advanced_threads"))
        if t in known_threads and t not in resolved
    ]
    return ChapterAnalysis(
        summary=str(data.get("summary") or ""),
        key_events=_str_list(data.get("key_events")),
        character_updates=updates,
        resolved_threads=resolved,
        advanced_threads=advanced,
        new_threads=new_threads,
        cliffhanger=str(data.get("cliffhanger") or ""),
    )


def fallback_analysis(text: str) -> ChapterAnalysis:
    """Minimal analysis from the text alone. Carries no thread or character signals."""
    sentences = split_sentences(text)
    return ChapterAnalysis(
        summary=truncate_text(" ".join(sentences[:3]), 600),
        cliffhanger=last_sentence(text),
        is_fallback=True,
    )


async def analyze_chapter(
    client: GenerationClient,
    project: Project,
    chapter: int,
    title: str,
    text: str,
    threads: list[PlotThread],
    characters: list[str],
) -> ChapterAnalysis:
    prompt = build_prompt(chapter, title, text, threads, characters)
    try:
        data, _ = await run_agent_json(client, SPEC, prompt, model=project.settings.model, label="analyst")
        analysis = parse_analysis(data, {t.id for t in threads})
    except (ValueError, RetryExhaustedError, ContentBlockedError) as e:
        logger.warning(f"Analysis of chapter {chapter} failed ({e}), using text-only fallback")
        return fallback_analysis(text)
    if not analysis.summary:
        analysis.summary = fallback_analysis(text).summary
    if not analysis.cliffhanger:
        analysis.cliffhanger = last_sentence(text)
    return analysis
