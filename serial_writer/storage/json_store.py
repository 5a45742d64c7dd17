"""Single JSON document on disk, rewritten after each mutation."""

import json
from pathlib import Path

from loguru import logger

from ..errors import PersistenceError
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
from .base import HISTORY_KINDS
from .memory_store import InMemoryStore, ProjectData


def _dump_models(items) -> list[dict]:
    return [item.model_dump(mode="json") for item in items]


def _to_dict(data: ProjectData) -> dict:
    return {
        "project": data.project.model_dump(mode="json"),
        "chapters": _dump_models(data.chapters.values()),
        "nodes": _dump_models(data.nodes.values()),
        "arcs": _dump_models(data.arcs.values()),
        "arc_summaries": _dump_models(data.arc_summaries),
        "volume_summaries": _dump_models(data.volume_summaries),
        "threads": _dump_models(data.threads.values()),
        "twists": _dump_models(data.twists.values()),
        "character_states": _dump_models(data.character_states),
        "milestones": _dump_models(data.milestones),
        "chunks": _dump_models(data.chunks),
        "history": data.history,
        "status": data.status.model_dump(mode="json") if data.status else None,
    }


def _from_dict(raw: dict) -> ProjectData:
    data = ProjectData(project=Project.model_validate(raw["project"]))
    for c in raw.get("chapters", []):
        record = ChapterRecord.model_validate(c)
        data.chapters[record.chapter_number] = record
    for n in raw.get("nodes", []):
        node = StoryGraphNode.model_validate(n)
        data.nodes[node.chapter_number] = node
    for a in raw.get("arcs", []):
        arc = PlotArc.model_validate(a)
        data.arcs[arc.arc_number] = arc
    data.arc_summaries = [ArcSummary.model_validate(s) for s in raw.get("arc_summaries", [])]
    data.volume_summaries = [VolumeSummary.model_validate(s) for s in raw.get("volume_summaries", [])]
    for t in raw.get("threads", []):
        thread = PlotThread.model_validate(t)
        data.threads[thread.id] = thread
    for t in raw.get("twists", []):
        twist = Twist.model_validate(t)
        data.twists[twist.id] = twist
    for s in raw.get("character_states", []):
        state = CharacterState.model_validate(s)
        data.character_states.append(state)
        latest = data.latest_states.get(state.name)
        if latest is None or state.chapter >= latest.chapter:
            data.latest_states[state.name] = state
    data.milestones = [CharacterMilestone.model_validate(m) for m in raw.get("milestones", [])]
    data.chunks = [MemoryChunk.model_validate(c) for c in raw.get("chunks", [])]
    history = raw.get("history") or {}
    data.history = {k: list(history.get(k, [])) for k in HISTORY_KINDS}
    if raw.get("status"):
        data.status = RunStatus.model_validate(raw["status"])
    return data


class JsonFileStore(InMemoryStore):
    """InMemoryStore that mirrors itself to a JSON file.

    Good enough for a CLI session or a small project; every mutation
    rewrites the whole file through a temporary sibling. A failed write
    restores the last saved state before raising.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self._data = {pid: _from_dict(p) for pid, p in raw.get("projects", {}).items()}
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError(f"Could not load store {self.path}: {e}") from e
        logger.debug(f"Loaded {len(self._data)} projects from {self.path}")

    def _changed(self, project_id: str) -> None:
        payload = {"projects": {pid: _to_dict(d) for pid, d in self._data.items()}}
        try:
            self._write(payload)
        except OSError as e:
            # Memory must never hold state the file does not
            self._rollback()
            raise PersistenceError(f"Could not write store {self.path}: {e}") from e

    def _write(self, payload: dict) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        tmp.replace(self.path)

    def _rollback(self) -> None:
        logger.warning(f"Write to {self.path} failed, restoring the last saved state")
        if self.path.exists():
            self._load()
        else:
            self._data = {}
