"""Dict-backed store, the reference implementation of StoryStore."""

from dataclasses import dataclass, field

from ..errors import DuplicateCommitError, PersistenceError
from ..models import (
    ArcSummary,
    ChapterRecord,
    CharacterMilestone,
    CharacterState,
    MemoryChunk,
    PlotArc,
    PlotThread,
    Project,
    RunStatus,
    StoryGraphNode,
    Twist,
    VolumeSummary,
)
from .base import HISTORY_KINDS, StoryStore


@dataclass
class ProjectData:
    project: Project
    chapters: dict[int, ChapterRecord] = field(default_factory=dict)
    nodes: dict[int, StoryGraphNode] = field(default_factory=dict)
    arcs: dict[int, PlotArc] = field(default_factory=dict)
    arc_summaries: list[ArcSummary] = field(default_factory=list)
    volume_summaries: list[VolumeSummary] = field(default_factory=list)
    threads: dict[str, PlotThread] = field(default_factory=dict)
    twists: dict[str, Twist] = field(default_factory=dict)
    character_states: list[CharacterState] = field(default_factory=list)
    latest_states: dict[str, CharacterState] = field(default_factory=dict)
    milestones: list[CharacterMilestone] = field(default_factory=list)
    chunks: list[MemoryChunk] = field(default_factory=list)
    history: dict[str, list[str]] = field(default_factory=lambda: {k: [] for k in HISTORY_KINDS})
    status: RunStatus | None = None


def _overlaps(start: int, end: int, existing) -> bool:
    return any(start <= s.end_chapter and end >= s.start_chapter for s in existing)


class InMemoryStore(StoryStore):
    def __init__(self):
        self._data: dict[str, ProjectData] = {}

    def _changed(self, project_id: str) -> None:
        """Hook called after every mutation."""

    def _project(self, project_id: str) -> ProjectData:
        data = self._data.get(project_id)
        if data is None:
            raise PersistenceError(f"Unknown project '{project_id}'")
        return data

    async def get_project(self, project_id: str) -> Project:
        return self._project(project_id).project.model_copy(deep=True)

    async def save_project(self, project: Project) -> None:
        data = self._data.get(project.id)
        if data is None:
            self._data[project.id] = ProjectData(project=project.model_copy(deep=True))
        else:
            data.project = project.model_copy(deep=True)
        self._changed(project.id)

    async def list_projects(self) -> list[Project]:
        return [d.project.model_copy(deep=True) for d in self._data.values()]

    async def insert_chapter(self, record: ChapterRecord) -> None:
        data = self._project(record.project_id)
        if record.chapter_number in data.chapters:
            raise DuplicateCommitError(record.project_id, record.chapter_number)
        data.chapters[record.chapter_number] = record
        self._changed(record.project_id)

    async def get_chapter(self, project_id: str, chapter_number: int) -> ChapterRecord | None:
        return self._project(project_id).chapters.get(chapter_number)

    async def list_chapters(self, project_id: str, start: int = 1, end: int | None = None) -> list[ChapterRecord]:
        chapters = self._project(project_id).chapters
        return [chapters[n] for n in sorted(chapters) if n >= start and (end is None or n <= end)]

    async def latest_chapter_number(self, project_id: str) -> int:
        return max(self._project(project_id).chapters, default=0)

    async def save_graph_node(self, project_id: str, node: StoryGraphNode) -> None:
        self._project(project_id).nodes[node.chapter_number] = node.model_copy(deep=True)
        self._changed(project_id)

    async def list_graph_nodes(self, project_id: str, start: int = 1, end: int | None = None) -> list[StoryGraphNode]:
        nodes = self._project(project_id).nodes
        return [nodes[n] for n in sorted(nodes) if n >= start and (end is None or n <= end)]

    async def recent_graph_nodes(self, project_id: str, limit: int, before: int | None = None) -> list[StoryGraphNode]:
        nodes = self._project(project_id).nodes
        numbers = [n for n in sorted(nodes) if before is None or n < before]
        return [nodes[n] for n in numbers[-limit:]] if limit > 0 else []

    async def save_arc(self, project_id: str, arc: PlotArc) -> None:
        self._project(project_id).arcs[arc.arc_number] = arc.model_copy(deep=True)
        self._changed(project_id)

    async def get_arc(self, project_id: str, arc_number: int) -> PlotArc | None:
        arc = self._project(project_id).arcs.get(arc_number)
        return arc.model_copy(deep=True) if arc else None

    async def insert_arc_summary(self, project_id: str, summary: ArcSummary) -> None:
        data = self._project(project_id)
        if _overlaps(summary.start_chapter, summary.end_chapter, data.arc_summaries):
            raise PersistenceError(
                f"Arc summary {summary.start_chapter}-{summary.end_chapter} overlaps an existing one"
            )
        data.arc_summaries.append(summary)
        data.arc_summaries.sort(key=lambda s: s.start_chapter)
        self._changed(project_id)

    async def list_arc_summaries(self, project_id: str) -> list[ArcSummary]:
        return list(self._project(project_id).arc_summaries)

    async def insert_volume_summary(self, project_id: str, summary: VolumeSummary) -> None:
        data = self._project(project_id)
        if _overlaps(summary.start_chapter, summary.end_chapter, data.volume_summaries):
            raise PersistenceError(
                f"Volume summary {summary.start_chapter}-{summary.end_chapter} overlaps an existing one"
            )
        data.volume_summaries.append(summary)
        data.volume_summaries.sort(key=lambda s: s.start_chapter)
        self._changed(project_id)

    async def list_volume_summaries(self, project_id: str) -> list[VolumeSummary]:
        return list(self._project(project_id).volume_summaries)

    async def save_thread(self, project_id: str, thread: PlotThread) -> None:
        self._project(project_id).threads[thread.id] = thread.model_copy(deep=True)
        self._changed(project_id)

    async def list_threads(self, project_id: str, include_resolved: bool = False) -> list[PlotThread]:
        threads = self._project(project_id).threads.values()
        return [t.model_copy(deep=True) for t in threads if include_resolved or t.is_open]

    async def save_twist(self, project_id: str, twist: Twist) -> None:
        self._project(project_id).twists[twist.id] = twist.model_copy(deep=True)
        self._changed(project_id)

    async def list_twists(self, project_id: str, start: int | None = None, end: int | None = None) -> list[Twist]:
        twists = sorted(self._project(project_id).twists.values(), key=lambda t: t.target_chapter)
        return [
            t.model_copy(deep=True) for t in twists
            if (start is None or t.target_chapter >= start) and (end is None or t.target_chapter <= end)
        ]

    async def append_character_state(self, project_id: str, state: CharacterState) -> None:
        data = self._project(project_id)
        data.character_states.append(state)
        latest = data.latest_states.get(state.name)
        if latest is None or state.chapter >= latest.chapter:
            data.latest_states[state.name] = state
        self._changed(project_id)

    async def latest_character_states(self, project_id: str) -> dict[str, CharacterState]:
        return dict(self._project(project_id).latest_states)

    async def character_history(self, project_id: str, name: str) -> list[CharacterState]:
        states = [s for s in self._project(project_id).character_states if s.name == name]
        return sorted(states, key=lambda s: s.chapter)

    async def append_milestone(self, project_id: str, milestone: CharacterMilestone) -> None:
        self._project(project_id).milestones.append(milestone)
        self._changed(project_id)

    async def list_milestones(self, project_id: str, start: int = 1, end: int | None = None) -> list[CharacterMilestone]:
        return [
            m for m in self._project(project_id).milestones
            if m.chapter >= start and (end is None or m.chapter <= end)
        ]

    async def save_chunks(self, project_id: str, chapter_number: int, chunks: list[MemoryChunk]) -> None:
        data = self._project(project_id)
        kept = [c for c in data.chunks if c.chapter_number != chapter_number]
        data.chunks = kept + [c.model_copy(deep=True) for c in chunks]
        data.chunks.sort(key=lambda c: (c.chapter_number, c.index))
        self._changed(project_id)

    async def list_chunks(self, project_id: str, before: int | None = None) -> list[MemoryChunk]:
        return [
            c.model_copy(deep=True) for c in self._project(project_id).chunks
            if before is None or c.chapter_number < before
        ]

    async def append_history(self, project_id: str, kind: str, text: str) -> None:
        if kind not in HISTORY_KINDS:
            raise ValueError(f"Unknown history kind '{kind}'")
        self._project(project_id).history[kind].append(text)
        self._changed(project_id)

    async def list_history(self, project_id: str, kind: str, limit: int | None = None) -> list[str]:
        if kind not in HISTORY_KINDS:
            raise ValueError(f"Unknown history kind '{kind}'")
        items = self._project(project_id).history[kind]
        if limit is None:
            return list(items)
        return list(items[-limit:]) if limit > 0 else []

    async def save_status(self, status: RunStatus) -> None:
        self._project(status.project_id).status = status.model_copy()
        self._changed(status.project_id)

    async def get_status(self, project_id: str) -> RunStatus | None:
        status = self._project(project_id).status
        return status.model_copy() if status else None
