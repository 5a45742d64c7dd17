"""Persistence capability the pipeline talks to."""

from abc import ABC, abstractmethod

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

HISTORY_KINDS = ("title", "opening", "cliffhanger")


class StoryStore(ABC):
    """Opaque read/write access to every persisted entity, keyed by project id.

    Chapter commits are insert-if-absent: inserting an existing chapter
    number raises DuplicateCommitError and leaves the stored record alone.
    Arc and volume summaries are insert-only and may not overlap.
    Character states are append-only snapshots.
    """

    # projects
    @abstractmethod
    async def get_project(self, project_id: str) -> Project: ...

    @abstractmethod
    async def save_project(self, project: Project) -> None: ...

    @abstractmethod
    async def list_projects(self) -> list[Project]: ...

    # chapters
    @abstractmethod
    async def insert_chapter(self, record: ChapterRecord) -> None: ...

    @abstractmethod
    async def get_chapter(self, project_id: str, chapter_number: int) -> ChapterRecord | None: ...

    @abstractmethod
    async def list_chapters(self, project_id: str, start: int = 1, end: int | None = None) -> list[ChapterRecord]: ...

    @abstractmethod
    async def latest_chapter_number(self, project_id: str) -> int: ...

    # story graph
    @abstractmethod
    async def save_graph_node(self, project_id: str, node: StoryGraphNode) -> None: ...

    @abstractmethod
    async def list_graph_nodes(self, project_id: str, start: int = 1, end: int | None = None) -> list[StoryGraphNode]: ...

    @abstractmethod
    async def recent_graph_nodes(self, project_id: str, limit: int, before: int | None = None) -> list[StoryGraphNode]: ...

    # arcs and roll-ups
    @abstractmethod
    async def save_arc(self, project_id: str, arc: PlotArc) -> None: ...

    @abstractmethod
    async def get_arc(self, project_id: str, arc_number: int) -> PlotArc | None: ...

    @abstractmethod
    async def insert_arc_summary(self, project_id: str, summary: ArcSummary) -> None: ...

    @abstractmethod
    async def list_arc_summaries(self, project_id: str) -> list[ArcSummary]: ...

    @abstractmethod
    async def insert_volume_summary(self, project_id: str, summary: VolumeSummary) -> None: ...

    @abstractmethod
    async def list_volume_summaries(self, project_id: str) -> list[VolumeSummary]: ...

    # threads, twists, characters
    @abstractmethod
    async def save_thread(self, project_id: str, thread: PlotThread) -> None: ...

    @abstractmethod
    async def list_threads(self, project_id: str, include_resolved: bool = False) -> list[PlotThread]: ...

    @abstractmethod
    async def save_twist(self, project_id: str, twist: Twist) -> None: ...

    @abstractmethod
    async def list_twists(self, project_id: str, start: int | None = None, end: int | None = None) -> list[Twist]: ...

    @abstractmethod
    async def append_character_state(self, project_id: str, state: CharacterState) -> None: ...

    @abstractmethod
    async def latest_character_states(self, project_id: str) -> dict[str, CharacterState]: ...

    @abstractmethod
    async def character_history(self, project_id: str, name: str) -> list[CharacterState]: ...

    @abstractmethod
    async def append_milestone(self, project_id: str, milestone: CharacterMilestone) -> None: ...

    @abstractmethod
    async def list_milestones(self, project_id: str, start: int = 1, end: int | None = None) -> list[CharacterMilestone]: ...

    # retrieval chunks
    @abstractmethod
    async def save_chunks(self, project_id: str, chapter_number: int, chunks: list[MemoryChunk]) -> None:
        """Replace the chunks stored for one chapter."""

    @abstractmethod
    async def list_chunks(self, project_id: str, before: int | None = None) -> list[MemoryChunk]: ...

    # anti-repetition history
    @abstractmethod
    async def append_history(self, project_id: str, kind: str, text: str) -> None: ...

    @abstractmethod
    async def list_history(self, project_id: str, kind: str, limit: int | None = None) -> list[str]: ...

    # status surface
    @abstractmethod
    async def save_status(self, status: RunStatus) -> None: ...

    @abstractmethod
    async def get_status(self, project_id: str) -> RunStatus | None: ...
