"""Persistent narrative memory: threads, arcs, twists, characters and roll-ups."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ThreadPriority(str, Enum):
    CRITICAL = "critical"
    MAIN = "main"
    SUB = "sub"
    BACKGROUND = "background"

    @property
    def weight(self) -> int:
        return {"critical": 100, "main": 80, "sub": 50, "background": 20}[self.value]


class ThreadStatus(str, Enum):
    OPEN = "open"
    DEVELOPING = "developing"
    RESOLVED = "resolved"


class PlotThread(BaseModel):
    id: str
    description: str = ""
    priority: ThreadPriority = ThreadPriority.SUB
    status: ThreadStatus = ThreadStatus.OPEN
    origin_chapter: int = Field(default=1, ge=1)
    last_mentioned_chapter: int = 0
    resolution_chapter: int | None = None
    characters: list[str] = Field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.status != ThreadStatus.RESOLVED

    def resolve(self, chapter: int) -> "PlotThread":
        if chapter < self.origin_chapter:
            raise ValueError(
                f"Thread '{self.id}' introduced in chapter {self.origin_chapter} "
                f"cannot resolve in chapter {chapter}"
            )
        return self.model_copy(update={
            "status": ThreadStatus.RESOLVED,
            "resolution_chapter": chapter,
            "last_mentioned_chapter": chapter,
        })


class ArcStatus(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"


class PlotArc(BaseModel):
    arc_number: int = Field(ge=1)
    start_chapter: int = Field(ge=1)
    end_chapter: int = Field(ge=1)
    climax_chapter: int
    theme: str = ""
    status: ArcStatus = ArcStatus.PLANNED
    brief: str = ""

    def contains(self, chapter: int) -> bool:
        return self.start_chapter <= chapter <= self.end_chapter


class TwistStatus(str, Enum):
    PENDING = "pending"
    REVEALED = "revealed"


class Twist(BaseModel):
    id: str
    arc_number: int
    target_chapter: int
    twist_type: str
    description: str = ""
    impact: int = Field(default=50, ge=0, le=100)
    status: TwistStatus = TwistStatus.PENDING
    foreshadowing_chapters: list[int] = Field(default_factory=list)


class CharacterState(BaseModel):
    """Snapshot of one character as of a chapter. Snapshots are never edited."""

    model_config = ConfigDict(frozen=True)

    name: str
    chapter: int = 0
    power_level: str = ""
    health: str = ""
    emotional_state: str = ""
    relationships: dict[str, str] = Field(default_factory=dict)
    abilities: list[str] = Field(default_factory=list)
    alive: bool = True

    def descriptor(self) -> str:
        parts = [p for p in (self.power_level, self.health, self.emotional_state) if p]
        if not self.alive:
            parts.insert(0, "deceased")
        return ", ".join(parts) or "no notable change"


class CharacterMilestone(BaseModel):
    name: str
    chapter: int
    event: str
    change: str = ""
    major: bool = False


class StoryGraphNode(BaseModel):
    chapter_number: int = Field(ge=1)
    title: str = ""
    summary: str = ""
    key_events: list[str] = Field(default_factory=list)
    character_snapshot: dict[str, str] = Field(default_factory=dict)
    open_threads: list[str] = Field(default_factory=list)
    opening: str = ""
    cliffhanger: str = ""


class ArcSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    arc_number: int
    start_chapter: int
    end_chapter: int
    theme: str = ""
    summary: str = ""
    milestones: list[str] = Field(default_factory=list)
    resolved_threads: list[str] = Field(default_factory=list)
    introduced_threads: list[str] = Field(default_factory=list)
    character_deltas: dict[str, str] = Field(default_factory=dict)


class VolumeSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    volume_number: int
    start_chapter: int
    end_chapter: int
    title: str = ""
    summary: str = ""
    milestones: list[str] = Field(default_factory=list)
    resolved_threads: list[str] = Field(default_factory=list)
    introduced_threads: list[str] = Field(default_factory=list)
    open_threads: list[str] = Field(default_factory=list)
    character_deltas: dict[str, str] = Field(default_factory=dict)
    active_characters: list[str] = Field(default_factory=list)


class MemoryChunk(BaseModel):
    """A passage of a committed chapter kept for similarity retrieval."""

    chapter_number: int = Field(ge=1)
    index: int = 0
    kind: str = "scene"
    content: str
    characters: list[str] = Field(default_factory=list)
    embedding: list[float] | None = None
