"""Bounded context payload for writing chapter N.

Five levels, each a lossy compression of the one below and each capped on
its own: story essence, relevant volume summaries, the current arc, the last
few chapter nodes, and the live character/thread state. Passages of older
chapters found by similarity search are added as their own capped level. A level that fails
to load is left out and the payload is flagged degraded.
"""

from dataclasses import dataclass, field

from loguru import logger

from ..config import MemoryConfig, PlotConfig
from ..errors import PersistenceError, SerialWriterError
from ..models import CharacterState, PlotThread, Project, StoryGraphNode
from ..plot import ChapterObjectives, PlotArcManager
from ..storage import StoryStore
from ..utils.text import truncate_text
from .repetition import AntiRepetitionTracker, NegativeConstraints
from .retrieval import ChapterRetriever
from .volumes import select_volumes

THREAD_STALE_CHAPTERS = 20


@dataclass
class ContextPayload:
    chapter_number: int
    essence: str = ""
    volumes: str = ""
    arc: str = ""
    retrieved: str = ""
    chapters: str = ""
    previous_ending: str = ""
    characters: str = ""
    threads: str = ""
    negative: NegativeConstraints = field(default_factory=NegativeConstraints)
    objectives: ChapterObjectives | None = None
    volume_numbers: list[int] = field(default_factory=list)
    recent_chapters: list[int] = field(default_factory=list)
    retrieved_chapters: list[int] = field(default_factory=list)
    thread_ids: list[str] = field(default_factory=list)
    character_names: list[str] = field(default_factory=list)
    degraded: bool = False
    missing_levels: list[str] = field(default_factory=list)

    def sections(self) -> list[tuple[str, str]]:
        return [
            ("Story Essence", self.essence),
            ("Earlier Volumes", self.volumes),
            ("Current Arc", self.arc),
            ("Related Earlier Events", self.retrieved),
            ("Recent Chapters", self.chapters),
            ("Previous Chapter Ending", self.previous_ending),
            ("Characters", self.characters),
            ("Open Plot Threads", self.threads),
            ("Do Not Repeat", self.negative.render()),
        ]

    def render(self) -> str:
        return "\n\n".join(f"## {title}\n{body}" for title, body in self.sections() if body)

    @property
    def total_chars(self) -> int:
        return len(self.render())


def thread_score(thread: PlotThread, chapter: int, active_characters: set[str]) -> float:
    overlap = 0.0
    if thread.characters:
        overlap = len(set(thread.characters) & active_characters) / len(thread.characters)
    quiet = chapter - max(thread.last_mentioned_chapter, thread.origin_chapter)
    urgency = min(1.0, max(0, quiet) / THREAD_STALE_CHAPTERS)
    recency = max(0.0, 10 - (chapter - thread.origin_chapter) / 10)
    return overlap * 40 + urgency * 30 + thread.priority.weight * 0.3 + recency


def render_character(state: CharacterState) -> str:
    line = f"- {state.name}: {state.descriptor()}"
    if state.abilities:
        line += f"; abilities: {', '.join(state.abilities[:5])}"
    if state.relationships:
        rels = ", ".join(f"{k} ({v})" for k, v in list(state.relationships.items())[:4])
        line += f"; relationships: {rels}"
    return line


def render_node(node: StoryGraphNode) -> str:
    line = f"Chapter {node.chapter_number}"
    if node.title:
        line += f" - {node.title}"
    line += f": {node.summary}"
    if node.key_events:
        line += f" Key events: {'; '.join(node.key_events[:4])}."
    return line


class ContextAssembler:
    def __init__(
        self,
        store: StoryStore,
        arc_manager: PlotArcManager,
        tracker: AntiRepetitionTracker,
        config: MemoryConfig | None = None,
        plot_config: PlotConfig | None = None,
        retriever: ChapterRetriever | None = None,
    ):
        self.store = store
        self.arc_manager = arc_manager
        self.tracker = tracker
        self.config = config or MemoryConfig()
        self.plot_config = plot_config or arc_manager.config
        self.retriever = retriever

    def recent_chapter_count(self, volumes_included: int) -> int:
        """K shrinks by one per included volume summary, never below the floor."""
        return max(self.config.min_recent_chapters, self.config.recent_chapters - volumes_included)

    async def _load(self, name: str, payload: ContextPayload, coro, errors=(PersistenceError,)):
        try:
            return await coro
        except errors as e:
            logger.warning(f"Context level '{name}' unavailable for chapter {payload.chapter_number}: {e}")
            payload.degraded = True
            payload.missing_levels.append(name)
            return None

    async def _state(self, project: Project, chapter: int):
        states = await self.store.latest_character_states(project.id)
        threads = await self.store.list_threads(project.id)
        return states, threads

    async def _volumes(self, project: Project, chapter: int, threads: set[str], characters: set[str]):
        volumes = await self.store.list_volume_summaries(project.id)
        return select_volumes(
            volumes, chapter, self.plot_config.chapters_per_volume, threads, characters, self.config
        )

    async def _arc(self, project: Project, chapter: int):
        objectives = await self.arc_manager.objectives_for(project, chapter)
        previous = await self.arc_manager.arc_summaries(
            project.id, objectives.arc_number, self.config.arc_summary_lookback
        )
        return objectives, previous

    async def _chapters(self, project: Project, chapter: int, k: int):
        nodes = await self.store.recent_graph_nodes(project.id, k, before=chapter)
        previous = await self.store.get_chapter(project.id, chapter - 1) if chapter > 1 else None
        return nodes, previous

    async def assemble(self, project: Project, chapter: int) -> ContextPayload:
        """Build the payload for writing `chapter`. Never raises on a missing level."""
        cfg = self.config
        payload = ContextPayload(chapter_number=chapter)
        payload.essence = truncate_text(project.story_essence, cfg.essence_chars)

        # Characters and threads first: volume relevance is measured against them
        state = await self._load("characters_threads", payload, self._state(project, chapter))
        states: dict[str, CharacterState] = state[0] if state else {}
        threads: list[PlotThread] = state[1] if state else []
        active_characters = {n for n, s in states.items() if s.alive}
        if project.protagonist:
            active_characters.add(project.protagonist)
        active_threads = {t.id for t in threads}

        selected = await self._load(
            "volumes", payload, self._volumes(project, chapter, active_threads, active_characters)
        ) or []
        if selected:
            blocks = []
            for vs in selected:
                v = vs.volume
                block = f"Volume {v.volume_number} (chapters {v.start_chapter}-{v.end_chapter}): {v.summary}"
                if v.character_deltas:
                    block += "\nCharacter arcs: " + "; ".join(f"{k}: {d}" for k, d in list(v.character_deltas.items())[:6])
                relevant = sorted((set(v.introduced_threads) | set(v.open_threads)) & active_threads)
                if relevant:
                    block += f"\nRelevant threads: {', '.join(relevant)}"
                blocks.append(block)
            payload.volumes = truncate_text("\n\n".join(blocks), cfg.volume_chars)
            payload.volume_numbers = [vs.volume.volume_number for vs in selected]

        arc = await self._load("arc", payload, self._arc(project, chapter))
        if arc:
            objectives, previous_arcs = arc
            payload.objectives = objectives
            parts = [objectives.render()]
            for s in previous_arcs:
                parts.append(f"Earlier arc {s.arc_number} ({s.theme}, chapters {s.start_chapter}-{s.end_chapter}): {s.summary}")
            payload.arc = truncate_text("\n\n".join(parts), cfg.arc_chars)

        k = self.recent_chapter_count(len(selected))
        recent = await self._load("chapters", payload, self._chapters(project, chapter, k))
        if recent:
            nodes, previous = recent
            payload.recent_chapters = [n.chapter_number for n in nodes]
            payload.chapters = truncate_text("\n".join(render_node(n) for n in nodes), cfg.chapter_chars, from_end=True)
            ending = []
            if nodes and nodes[-1].cliffhanger:
                ending.append(f"Cliffhanger to pick up: {nodes[-1].cliffhanger}")
            if previous is not None:
                ending.append("Last lines:\n" + truncate_text(previous.body, 600, from_end=True))
            payload.previous_ending = "\n".join(ending)

        if self.retriever is not None:
            cliffhanger = (recent[0][-1].cliffhanger or "") if recent and recent[0] else ""
            arc_plan = payload.objectives.render() if payload.objectives else ""
            query = self.retriever.build_query(project, chapter, cliffhanger, arc_plan)
            hits = await self._load(
                "retrieval", payload, self.retriever.retrieve(project, chapter, query), errors=(SerialWriterError,)
            ) or []
            if hits:
                payload.retrieved = self.retriever.format(hits, chapter)
                payload.retrieved_chapters = sorted({h.chunk.chapter_number for h in hits})

        if states:
            alive = sorted((s for s in states.values() if s.alive), key=lambda s: (s.name != project.protagonist, -s.chapter))
            dead = [s.name for s in states.values() if not s.alive]
            shown = alive[:cfg.max_characters_in_context]
            lines = [render_character(s) for s in shown]
            if dead:
                lines.append(f"Deceased (must not appear alive): {', '.join(sorted(dead))}")
            payload.characters = truncate_text("\n".join(lines), cfg.state_chars)
            payload.character_names = [s.name for s in shown]

        if threads:
            ranked = sorted(
                threads,
                key=lambda t: (-t.priority.weight, -thread_score(t, chapter, active_characters)),
            )[:cfg.max_threads_in_context]
            payload.threads = truncate_text(
                "\n".join(f"- [{t.priority.value}/{t.status.value}] {t.id}: {t.description}" for t in ranked),
                cfg.state_chars,
            )
            payload.thread_ids = [t.id for t in ranked]

        negative = await self._load(
            "negative_constraints",
            payload,
            self.tracker.negative_constraints(
                project.id,
                cfg.max_titles_in_context,
                cfg.max_openings_in_context,
                cfg.max_cliffhangers_in_context,
            ),
        )
        if negative is not None:
            payload.negative = negative

        logger.debug(
            f"Context for chapter {chapter}: {payload.total_chars} chars, volumes {payload.volume_numbers}, "
            f"recent {payload.recent_chapters}, retrieved {payload.retrieved_chapters}{' (degraded)' if payload.degraded else ''}"
        )
        return payload
