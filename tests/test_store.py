import asyncio
import json

import pytest

from serial_writer.errors import DuplicateCommitError, PersistenceError
from serial_writer.models import (
    ArcSummary,
    ChapterRecord,
    CharacterState,
    MemoryChunk,
    PlotThread,
    RunState,
    RunStatus,
    StoryGraphNode,
    ThreadStatus,
    VolumeSummary,
)
from serial_writer.storage import InMemoryStore, JsonFileStore

from fakes import make_project


def record(n, body="Body.", project_id="ember"):
    return ChapterRecord(project_id=project_id, chapter_number=n, title=f"T{n}", body=body, word_count=1)


@pytest.fixture
def seeded(store, project):
    asyncio.run(store.save_project(project))
    return store


def test_unknown_project(store):
    with pytest.raises(PersistenceError):
        asyncio.run(store.get_project("nope"))
    with pytest.raises(PersistenceError):
        asyncio.run(store.insert_chapter(record(1, project_id="nope")))


def test_project_reads_are_copies(seeded):
    project = asyncio.run(seeded.get_project("ember"))
    project.current_chapter = 42
    assert asyncio.run(seeded.get_project("ember")).current_chapter == 0


def test_chapter_commit_is_insert_if_absent(seeded):
    async def run():
        await seeded.insert_chapter(record(1, "Original."))
        with pytest.raises(DuplicateCommitError) as exc:
            await seeded.insert_chapter(record(1, "Replacement."))
        return exc.value, await seeded.get_chapter("ember", 1), await seeded.latest_chapter_number("ember")

    error, stored, latest = asyncio.run(run())

    assert error.chapter_number == 1
    assert stored.body == "Original."
    assert latest == 1


def test_chapter_ranges(seeded):
    async def run():
        for n in (3, 1, 2, 5):
            await seeded.insert_chapter(record(n))
        return (
            [c.chapter_number for c in await seeded.list_chapters("ember", start=2)],
            [c.chapter_number for c in await seeded.list_chapters("ember", 1, 3)],
            await seeded.get_chapter("ember", 4),
        )

    after_two, first_three, missing = asyncio.run(run())
    assert after_two == [2, 3, 5]
    assert first_three == [1, 2, 3]
    assert missing is None


def test_recent_graph_nodes(seeded):
    async def run():
        for n in range(1, 7):
            await seeded.save_graph_node("ember", StoryGraphNode(chapter_number=n, summary=f"S{n}"))
        return (
            [n.chapter_number for n in await seeded.recent_graph_nodes("ember", 3)],
            [n.chapter_number for n in await seeded.recent_graph_nodes("ember", 2, before=4)],
            await seeded.recent_graph_nodes("ember", 0),
        )

    assert asyncio.run(run()) == ([4, 5, 6], [2, 3], [])


def test_summaries_may_not_overlap(seeded):
    async def run():
        await seeded.insert_arc_summary("ember", ArcSummary(arc_number=2, start_chapter=21, end_chapter=40))
        await seeded.insert_arc_summary("ember", ArcSummary(arc_number=1, start_chapter=1, end_chapter=20))
        with pytest.raises(PersistenceError):
            await seeded.insert_arc_summary("ember", ArcSummary(arc_number=9, start_chapter=15, end_chapter=25))
        await seeded.insert_volume_summary("ember", VolumeSummary(volume_number=1, start_chapter=1, end_chapter=100))
        with pytest.raises(PersistenceError):
            await seeded.insert_volume_summary("ember", VolumeSummary(volume_number=1, start_chapter=1, end_chapter=100))
        return await seeded.list_arc_summaries("ember")

    assert [s.arc_number for s in asyncio.run(run())] == [1, 2]


def test_threads_hide_resolved_by_default(seeded):
    async def run():
        await seeded.save_thread("ember", PlotThread(id="open"))
        await seeded.save_thread("ember", PlotThread(id="closed", status=ThreadStatus.RESOLVED))
        return (
            [t.id for t in await seeded.list_threads("ember")],
            sorted(t.id for t in await seeded.list_threads("ember", include_resolved=True)),
        )

    assert asyncio.run(run()) == (["open"], ["closed", "open"])


def test_character_snapshots_are_append_only(seeded):
    async def run():
        await seeded.append_character_state("ember", CharacterState(name="Aria", chapter=5, health="hurt"))
        await seeded.append_character_state("ember", CharacterState(name="Aria", chapter=3, health="fine"))
        return await seeded.latest_character_states("ember"), await seeded.character_history("ember", "Aria")

    latest, history = asyncio.run(run())
    assert latest["Aria"].health == "hurt"
    assert [s.chapter for s in history] == [3, 5]


def test_history_lists(seeded):
    async def run():
        for i in range(5):
            await seeded.append_history("ember", "title", f"T{i}")
        return (
            await seeded.list_history("ember", "title"),
            await seeded.list_history("ember", "title", 2),
            await seeded.list_history("ember", "title", 0),
        )

    full, last_two, none = asyncio.run(run())
    assert full == ["T0", "T1", "T2", "T3", "T4"]
    assert last_two == ["T3", "T4"]
    assert none == []
    with pytest.raises(ValueError):
        asyncio.run(seeded.append_history("ember", "summary", "x"))


def test_save_chunks_replaces_chapter(seeded):
    async def run():
        await seeded.save_chunks("ember", 2, [MemoryChunk(chapter_number=2, content="old")])
        await seeded.save_chunks("ember", 1, [
            MemoryChunk(chapter_number=1, index=1, content="b"),
            MemoryChunk(chapter_number=1, index=0, kind="key_event", content="a"),
        ])
        await seeded.save_chunks("ember", 2, [MemoryChunk(chapter_number=2, content="new", embedding=[0.5])])
        return await seeded.list_chunks("ember"), await seeded.list_chunks("ember", before=2)

    everything, earlier = asyncio.run(run())
    assert [(c.chapter_number, c.content) for c in everything] == [(1, "a"), (1, "b"), (2, "new")]
    assert everything[2].embedding == [0.5]
    assert [c.content for c in earlier] == ["a", "b"]


def test_json_store_round_trip(tmp_path):
    path = tmp_path / "state" / "story.json"

    async def write():
        store = JsonFileStore(path)
        await store.save_project(make_project())
        await store.insert_chapter(record(1, "First chapter."))
        await store.save_graph_node("ember", StoryGraphNode(chapter_number=1, summary="S1"))
        await store.save_thread("ember", PlotThread(id="crown", description="The crown"))
        await store.append_character_state("ember", CharacterState(name="Aria", chapter=1, power_level="novice"))
        await store.insert_arc_summary("ember", ArcSummary(arc_number=1, start_chapter=1, end_chapter=20))
        await store.append_history("ember", "opening", "Snow fell.")
        await store.save_chunks("ember", 1, [MemoryChunk(chapter_number=1, content="Snow fell.", embedding=[0.1, 0.2])])
        await store.save_status(RunStatus(project_id="ember", chapter_number=2, state=RunState.DRAFTING, progress=30))

    async def read():
        store = JsonFileStore(path)
        return (
            await store.get_chapter("ember", 1),
            await store.list_threads("ember"),
            await store.latest_character_states("ember"),
            await store.list_arc_summaries("ember"),
            await store.list_history("ember", "opening"),
            await store.get_status("ember"),
            await store.list_chunks("ember"),
        )

    asyncio.run(write())
    assert path.exists()
    assert not path.with_suffix(".json.tmp").exists()

    chapter, threads, states, arcs, openings, status, chunks = asyncio.run(read())
    assert chapter.body == "First chapter."
    assert [t.id for t in threads] == ["crown"]
    assert states["Aria"].power_level == "novice"
    assert arcs[0].end_chapter == 20
    assert openings == ["Snow fell."]
    assert status.state == RunState.DRAFTING
    assert status.progress == 30
    assert chunks[0].embedding == [0.1, 0.2]

    data = json.loads(path.read_text(encoding="utf-8"))
    assert list(data["projects"]) == ["ember"]


def test_json_store_rejects_corrupt_file(tmp_path):
    path = tmp_path / "story.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        JsonFileStore(path)


class FailingJsonStore(JsonFileStore):
    fail_writes = False

    def _write(self, payload):
        if self.fail_writes:
            raise OSError("disk full")
        super()._write(payload)


def test_json_store_failed_write_leaves_no_chapter(tmp_path):
    path = tmp_path / "story.json"
    store = FailingJsonStore(path)

    async def run():
        await store.save_project(make_project())
        store.fail_writes = True
        with pytest.raises(PersistenceError):
            await store.insert_chapter(record(1, "Lost chapter."))
        store.fail_writes = False
        await store.save_status(RunStatus(project_id="ember", chapter_number=1, state=RunState.FAILED))
        return await store.latest_chapter_number("ember"), await JsonFileStore(path).get_chapter("ember", 1)

    latest, on_disk = asyncio.run(run())

    assert latest == 0
    assert on_disk is None
    assert json.loads(path.read_text(encoding="utf-8"))["projects"]["ember"]["chapters"] == []


def test_json_store_failed_first_write_forgets_project(tmp_path):
    store = FailingJsonStore(tmp_path / "story.json")
    store.fail_writes = True

    with pytest.raises(PersistenceError):
        asyncio.run(store.save_project(make_project()))
    assert asyncio.run(store.list_projects()) == []
