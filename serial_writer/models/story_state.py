"""Data models for projects, committed chapters and in-flight chapter runs."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..config import ProjectSettings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(BaseModel):
    id: str
    title: str = ""
    genre: str = "fantasy"
    protagonist: str = ""
    target_chapters: int = Field(default=1000, gt=0)
    current_chapter: int = Field(default=0, ge=0)
    story_essence: str = ""
    language: str = "en"
    settings: ProjectSettings = Field(default_factory=ProjectSettings)
    created_at: datetime = Field(default_factory=_utcnow)


class ChapterRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: str
    chapter_number: int = Field(ge=1)
    title: str
    body: str
    word_count: int = Field(ge=0)
    score: float = 0
    created_at: datetime = Field(default_factory=_utcnow)


class RunState(str, Enum):
    PLANNING = "planning"
    DRAFTING = "drafting"
    VALIDATING = "validating"
    REVIEWING = "reviewing"
    COMMITTING = "committing"
    ACCEPTED = "accepted"
    FAILED = "failed"
    STOPPED = "stopped"


class TerminalStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


STATE_PROGRESS = {
    RunState.PLANNING: 10,
    RunState.DRAFTING: 30,
    RunState.VALIDATING: 55,
    RunState.REVIEWING: 75,
    RunState.COMMITTING: 90,
    RunState.ACCEPTED: 100,
}


class RunStatus(BaseModel):
    project_id: str
    chapter_number: int = 0
    state: RunState = RunState.PLANNING
    progress: int = Field(default=0, ge=0, le=100)
    step: str = ""
    status: TerminalStatus = TerminalStatus.RUNNING
    attempt: int = 0
    error_kind: str | None = None
    error_message: str | None = None
    updated_at: datetime = Field(default_factory=_utcnow)


@dataclass
class SceneOutline:
    order: int = 0
    setting: str = ""
    characters: list[str] = field(default_factory=list)
    goal: str = ""
    conflict: str = ""
    resolution: str = ""
    estimated_words: int = 0


@dataclass
class ChapterOutline:
    chapter_number: int = 0
    title: str = ""
    summary: str = ""
    pov: str = ""
    location: str = ""
    scenes: list[SceneOutline] = field(default_factory=list)
    tension_level: int = 50
    engagement_beats: list[str] = field(default_factory=list)
    emotional_arc: dict[str, str] = field(default_factory=dict)
    cliffhanger: str = ""
    target_word_count: int = 0
    is_fallback: bool = False


@dataclass
class CriticIssue:
    type: str = ""
    description: str = ""
    severity: str = "minor"


@dataclass
class CriticReport:
    overall_score: float = 0
    engagement_score: float = 0
    pacing_score: float = 0
    issues: list[CriticIssue] = field(default_factory=list)
    approved: bool = False
    requires_rewrite: bool = False
    rewrite_instructions: str = ""
    word_ratio: float = 0.0
    style_score: float | None = None
    gate_violations: list[str] = field(default_factory=list)
    repetition_notes: list[str] = field(default_factory=list)


@dataclass
class AgentRunAttempt:
    attempt: int = 0
    outline: ChapterOutline | None = None
    draft: str = ""
    word_count: int = 0
    refinement_passes: list[str] = field(default_factory=list)
    critic_report: CriticReport | None = None
    decision: str = ""


@dataclass
class CharacterUpdate:
    name: str = ""
    power_level: str | None = None
    health: str | None = None
    emotional_state: str | None = None
    relationships: dict[str, str] = field(default_factory=dict)
    abilities: list[str] = field(default_factory=list)
    alive: bool | None = None
    change: str = ""


@dataclass
class NewThread:
    id: str = ""
    description: str = ""
    priority: str = "sub"
    characters: list[str] = field(default_factory=list)


@dataclass
class ChapterAnalysis:
    """Structured facts extracted from an accepted chapter.

    Thread status only ever changes through `resolved_threads` and
    `advanced_threads`, never by scanning the prose.
    """

    summary: str = ""
    key_events: list[str] = field(default_factory=list)
    character_updates: list[CharacterUpdate] = field(default_factory=list)
    resolved_threads: list[str] = field(default_factory=list)
    advanced_threads: list[str] = field(default_factory=list)
    new_threads: list[NewThread] = field(default_factory=list)
    cliffhanger: str = ""
    is_fallback: bool = False
