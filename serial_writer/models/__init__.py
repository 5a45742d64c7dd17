from .story_bible import (
    ArcStatus,
    ArcSummary,
    CharacterMilestone,
    CharacterState,
    MemoryChunk,
    PlotArc,
    PlotThread,
    StoryGraphNode,
    ThreadPriority,
    ThreadStatus,
    Twist,
    TwistStatus,
    VolumeSummary,
)
from .story_state import (
    STATE_PROGRESS,
    AgentRunAttempt,
    ChapterAnalysis,
    ChapterOutline,
    ChapterRecord,
    CriticIssue,
    CharacterUpdate,
    CriticReport,
    NewThread,
    Project,
    RunState,
    RunStatus,
    SceneOutline,
    TerminalStatus,
)

__all__ = [
    "ArcStatus",
    "ArcSummary",
    "CharacterMilestone",
    "CharacterState",
    "MemoryChunk",
    "PlotArc",
    "PlotThread",
    "StoryGraphNode",
    "ThreadPriority",
    "ThreadStatus",
    "Twist",
    "TwistStatus",
    "VolumeSummary",
    "STATE_PROGRESS",
    "AgentRunAttempt",
    "ChapterAnalysis",
    "ChapterOutline",
    "ChapterRecord",
    "CriticIssue",
    "CharacterUpdate",
    "CriticReport",
    "NewThread",
    "Project",
    "RunState",
    "RunStatus",
    "SceneOutline",
    "TerminalStatus",
]
