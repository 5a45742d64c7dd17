"""End-to-end chapter runs against a scripted backend and the in-memory store."""

import asyncio

import pytest

from serial_writer.config import AppConfig, PlotConfig
from serial_writer.errors import PersistenceError, ProjectBusyError
from serial_writer.models import ChapterRecord, RunState, TerminalStatus
from serial_writer.pipeline import Pipeline
from serial_writer.storage import InMemoryStore, JsonFileStore

from fakes import FakeBackend, make_client, make_outline, make_project, make_prose, make_review


class RecordingStore(InMemoryStore):
    def __init__(self):
        super().__init__()
        self.statuses = []

    async def save_status(self, status):
        self.statuses.append((status.state, status.progress))
        await super().save_status(status)


def build(backend=None, store=None, config=None, **kwargs):
    backend = backend or FakeBackend()
    store = store or InMemoryStore()
    asyncio.run(store.save_project(make_project()))
    pipeline = Pipeline(store, make_client(backend), config or AppConfig(), **kwargs)
    return pipeline, backend, store


def test_happy_path_commits_chapter_one():
    pipeline, backend, store = build()

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.ok
    assert result.status == TerminalStatus.COMPLETED
    chapter = result.chapter
    assert chapter.chapter_number == 1
    assert chapter.title == "The Ember Gate"
    assert chapter.word_count == 2800
    assert chapter.score == 8
    assert [a.decision for a in result.attempts] == ["accepted"]
    assert result.attempts[0].refinement_passes == ["fluency"]

    assert [backend.count(r) for r in ("architect", "writer", "refine", "critic", "analyst")] == [1, 1, 1, 1, 1]

    async def check():
        project = await store.get_project("ember")
        assert project.current_chapter == 1
        assert (await store.get_chapter("ember", 1)).body == chapter.body
        nodes = await store.list_graph_nodes("ember")
        assert [n.chapter_number for n in nodes] == [1]
        assert nodes[0].cliffhanger == "The gate opens onto a second, older gate."
        assert await store.list_history("ember", "title") == ["The Ember Gate"]
        assert len(await store.list_history("ember", "opening")) == 1
        assert await store.get_arc("ember", 1) is not None
        status = await store.get_status("ember")
        assert status.state == RunState.ACCEPTED
        assert status.progress == 100
        assert status.status == TerminalStatus.COMPLETED

    asyncio.run(check())


def test_status_progress_never_decreases():
    backend = FakeBackend().queue("critic", make_review(4, instructions="More tension"))
    pipeline, backend, store = build(backend, RecordingStore())

    assert asyncio.run(pipeline.produce_next_chapter("ember")).ok

    progress = [p for _, p in store.statuses]
    assert progress == sorted(progress)
    assert store.statuses[-1] == (RunState.ACCEPTED, 100)
    states = {s for s, _ in store.statuses}
    assert {RunState.PLANNING, RunState.DRAFTING, RunState.VALIDATING,
            RunState.REVIEWING, RunState.COMMITTING} <= states


def test_critic_rejections_feed_the_next_draft():
    backend = FakeBackend().queue(
        "critic",
        make_review(4, instructions="More tension"),
        make_review(5, instructions="Sharper dialogue"),
    )
    pipeline, backend, store = build(backend)

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.ok
    assert backend.count("writer") == 3
    assert backend.count("architect") == 1
    assert [a.decision for a in result.attempts] == ["rejected", "rejected", "accepted"]
    writer_prompts = [p for r, p in backend.calls if r == "writer"]
    assert "Revision Instructions" not in writer_prompts[0]
    assert "- More tension" in writer_prompts[1]
    assert "- More tension" in writer_prompts[2]
    assert "- Sharper dialogue" in writer_prompts[2]


def test_exhausted_attempts_fail_without_commit():
    backend = FakeBackend().queue("critic", *[make_review(4, instructions="Rework it")] * 3)
    pipeline, backend, store = build(backend)

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.status == TerminalStatus.FAILED
    assert result.error_kind == "QualityRejection"
    assert result.critic_report.overall_score == 4
    assert not result.critic_report.approved
    assert len(result.attempts) == 3
    assert backend.count("analyst") == 0
    with pytest.raises(type(result.error)):
        result.unwrap()

    async def check():
        assert await store.latest_chapter_number("ember") == 0
        assert (await store.get_project("ember")).current_chapter == 0
        status = await store.get_status("ember")
        assert status.state == RunState.FAILED
        assert status.error_kind == "QualityRejection"

    asyncio.run(check())


def test_counter_reconciled_from_committed_chapters():
    pipeline, backend, store = build()
    existing = ChapterRecord(project_id="ember", chapter_number=1, title="Ash", body="Ash fell.", word_count=2)
    asyncio.run(store.insert_chapter(existing))

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.ok
    assert result.chapter.chapter_number == 2
    assert asyncio.run(store.get_project("ember")).current_chapter == 2
    assert asyncio.run(store.get_chapter("ember", 1)).body == "Ash fell."


def test_chapter_committed_elsewhere_is_not_overwritten():
    class RacingStore(InMemoryStore):
        async def insert_chapter(self, record):
            await super().insert_chapter(record.model_copy(update={"body": "Written elsewhere."}))
            await super().insert_chapter(record)

    pipeline, backend, store = build(store=RacingStore())

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.status == TerminalStatus.FAILED
    assert result.error_kind == "DuplicateCommitError"
    assert asyncio.run(store.get_chapter("ember", 1)).body == "Written elsewhere."
    assert asyncio.run(store.list_history("ember", "title")) == []


def test_busy_project_raises_immediately():
    pipeline, backend, store = build()

    async def run():
        async with pipeline.leases.hold("ember"):
            with pytest.raises(ProjectBusyError):
                await pipeline.produce_next_chapter("ember")

    asyncio.run(run())

    assert backend.calls == []
    assert not pipeline.leases.is_held("ember")


def test_cancelled_before_start():
    pipeline, backend, store = build()

    async def run():
        event = asyncio.Event()
        event.set()
        return await pipeline.produce_next_chapter("ember", cancel_event=event)

    result = asyncio.run(run())

    assert result.status == TerminalStatus.STOPPED
    assert result.error_kind == "RunCancelled"
    assert backend.calls == []
    status = asyncio.run(store.get_status("ember"))
    assert status.state == RunState.STOPPED
    assert status.status == TerminalStatus.STOPPED


def test_cancelled_after_review_skips_commit():
    event = asyncio.Event()

    def approve_and_cancel(prompt):
        event.set()
        return make_review()

    backend = FakeBackend().queue("critic", approve_and_cancel)
    pipeline, backend, store = build(backend)

    result = asyncio.run(pipeline.produce_next_chapter("ember", cancel_event=event))

    assert result.status == TerminalStatus.STOPPED
    assert result.critic_report.approved
    assert backend.count("analyst") == 0
    assert asyncio.run(store.latest_chapter_number("ember")) == 0


def test_invalid_outline_uses_fallback():
    backend = FakeBackend().queue("architect", "not an outline")
    pipeline, backend, store = build(backend)

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.ok
    assert result.chapter.title == "Foundation 1"
    assert result.attempts[0].outline.is_fallback


def test_second_invalid_outline_fails_the_run():
    backend = FakeBackend().queue("architect", "not an outline", "still not an outline")
    pipeline, backend, store = build(backend)
    asyncio.run(store.append_history("ember", "title", "Foundation 1"))

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.status == TerminalStatus.FAILED
    assert result.error_kind == "InvalidOutlineError"
    assert backend.count("architect") == 2
    assert backend.count("writer") == 1


def test_duplicate_title_forces_replan():
    backend = FakeBackend().queue("architect", make_outline(), make_outline(title="Riders on the Ice"))
    pipeline, backend, store = build(backend)
    asyncio.run(store.append_history("ember", "title", "The Ember Gate"))

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.ok
    assert result.chapter.title == "Riders on the Ice"
    assert backend.count("architect") == 2
    assert backend.count("writer") == 2
    architect_prompts = [p for r, p in backend.calls if r == "architect"]
    assert "Do not reuse or paraphrase the title 'The Ember Gate'" in architect_prompts[1]
    first = result.attempts[0]
    assert first.decision == "rejected"
    assert first.critic_report.repetition_notes == [
        "The title repeats an earlier one: 'The Ember Gate'"
    ]


def test_commit_hooks():
    seen = []

    async def hook(record):
        seen.append(record.chapter_number)

    pipeline, _, _ = build(on_committed=hook)
    assert asyncio.run(pipeline.produce_next_chapter("ember")).ok
    assert seen == [1]

    def broken(record):
        raise RuntimeError("webhook down")

    pipeline, _, store = build(on_committed=broken)
    result = asyncio.run(pipeline.produce_next_chapter("ember"))
    assert result.ok
    assert asyncio.run(store.get_status("ember")).state == RunState.ACCEPTED


def test_bookkeeping_failure_keeps_the_commit():
    class NoGraphStore(InMemoryStore):
        async def save_graph_node(self, project_id, node):
            raise PersistenceError("graph unavailable")

    pipeline, _, store = build(store=NoGraphStore())

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.ok
    assert asyncio.run(store.get_project("ember")).current_chapter == 1
    assert asyncio.run(store.list_history("ember", "title")) == ["The Ember Gate"]


def test_status_save_failures_are_tolerated():
    class NoStatusStore(InMemoryStore):
        async def save_status(self, status):
            raise PersistenceError("status table locked")

    pipeline, _, store = build(store=NoStatusStore())

    assert asyncio.run(pipeline.produce_next_chapter("ember")).ok


def test_unknown_project_fails():
    pipeline, backend, _ = build()

    result = asyncio.run(pipeline.produce_next_chapter("ghost"))

    assert result.status == TerminalStatus.FAILED
    assert result.error_kind == "PersistenceError"
    assert backend.calls == []


def test_unexpected_error_marks_failed_and_propagates():
    backend = FakeBackend().queue("writer", RuntimeError("boom"))
    pipeline, backend, store = build(backend)

    with pytest.raises(RuntimeError, match="boom"):
        asyncio.run(pipeline.produce_next_chapter("ember"))

    status = asyncio.run(store.get_status("ember"))
    assert status.status == TerminalStatus.FAILED
    assert status.error_kind == "RuntimeError"
    assert not pipeline.leases.is_held("ember")


def drafting(backend, seed):
    def write(prompt):
        backend.prose = make_prose(seed=seed)
        return backend.prose
    return write


def test_consecutive_chapters():
    backend = FakeBackend()
    backend.queue("architect", make_outline(), make_outline(title="Riders on the Ice", chapter=2))
    backend.queue("writer", drafting(backend, "one"), drafting(backend, "two"))
    pipeline, backend, store = build(backend)

    results = asyncio.run(pipeline.produce_chapters("ember", 2))

    assert [r.chapter.chapter_number for r in results] == [1, 2]
    assert [r.chapter.title for r in results] == ["The Ember Gate", "Riders on the Ice"]
    assert asyncio.run(store.get_project("ember")).current_chapter == 2
    assert len(asyncio.run(store.list_history("ember", "opening"))) == 2


def test_produce_chapters_stops_at_first_failure():
    backend = FakeBackend().queue("critic", *[make_review(3)] * 3)
    pipeline, backend, store = build(backend)

    results = asyncio.run(pipeline.produce_chapters("ember", 3))

    assert len(results) == 1
    assert not results[0].ok
    assert backend.count("architect") == 1


def test_arc_summary_recovered_after_failed_roll_up():
    class FlakyArcStore(InMemoryStore):
        failures = 1

        async def insert_arc_summary(self, project_id, summary):
            if self.failures:
                self.failures -= 1
                raise PersistenceError("arc summaries unavailable")
            await super().insert_arc_summary(project_id, summary)

    titles = ["The Ember Gate", "Riders on the Ice", "Salt in the Wound", "A Lantern Below"]
    backend = FakeBackend()
    backend.queue("architect", *[make_outline(title=t, chapter=n) for n, t in enumerate(titles, 1)])
    backend.queue("writer", *[drafting(backend, f"chapter-{n}") for n in range(1, 5)])
    config = AppConfig(plot=PlotConfig(chapters_per_arc=2, chapters_per_volume=4))
    pipeline, backend, store = build(backend, FlakyArcStore(), config)

    results = asyncio.run(pipeline.produce_chapters("ember", 4))

    assert [r.ok for r in results] == [True] * 4
    arcs = asyncio.run(store.list_arc_summaries("ember"))
    assert [(s.start_chapter, s.end_chapter) for s in arcs] == [(1, 2), (3, 4)]
    volumes = asyncio.run(store.list_volume_summaries("ember"))
    assert [(v.start_chapter, v.end_chapter) for v in volumes] == [(1, 4)]


def test_failed_chapter_write_is_not_committed(tmp_path):
    class DiskFullOnCommit(JsonFileStore):
        committing = False

        async def insert_chapter(self, record):
            self.committing = True
            try:
                await super().insert_chapter(record)
            finally:
                self.committing = False

        def _write(self, payload):
            if self.committing:
                raise OSError("disk full")
            super()._write(payload)

    path = tmp_path / "story.json"
    pipeline, backend, store = build(store=DiskFullOnCommit(path))

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.status == TerminalStatus.FAILED
    assert result.error_kind == "PersistenceError"
    assert asyncio.run(store.latest_chapter_number("ember")) == 0
    reopened = JsonFileStore(path)
    assert asyncio.run(reopened.latest_chapter_number("ember")) == 0
    assert asyncio.run(reopened.get_status("ember")).state == RunState.FAILED


def test_commit_indexes_chapter_for_retrieval():
    pipeline, backend, store = build()

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.ok
    chunks = asyncio.run(store.list_chunks("ember"))
    assert chunks[0].kind == "key_event"
    assert chunks[0].content.startswith('Ch.1 "The Ember Gate": ')
    assert "Aria" in chunks[0].characters
    assert len(chunks) > 1
    assert all(c.chapter_number == 1 and c.embedding for c in chunks)
    assert backend.embed_calls == [[c.content for c in chunks]]


def test_failed_indexing_keeps_the_commit():
    class NoChunkStore(InMemoryStore):
        async def save_chunks(self, project_id, chapter_number, chunks):
            raise PersistenceError("chunk table unavailable")

    pipeline, backend, store = build(store=NoChunkStore())

    result = asyncio.run(pipeline.produce_next_chapter("ember"))

    assert result.ok
    assert asyncio.run(store.latest_chapter_number("ember")) == 1
    assert asyncio.run(store.list_chunks("ember")) == []
