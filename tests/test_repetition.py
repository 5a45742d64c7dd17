import asyncio

import pytest

from serial_writer.memory import AntiRepetitionTracker
from serial_writer.memory.repetition import normalize_title, title_similarity
from serial_writer.storage import InMemoryStore

from fakes import make_project

OPENING = (
    "Snow fell over the ridge all night, and by dawn the ember gate stood half buried, "
    "its iron teeth glowing through the drifts like the last coals of a fire nobody had "
    "tended for a hundred years, while Aria waited below with her spear across her knees "
    "and counted the riders coming up the frozen river road."
)


@pytest.fixture
def tracker():
    store = InMemoryStore()
    asyncio.run(store.save_project(make_project()))
    return AntiRepetitionTracker(store)


def test_normalize_title():
    assert normalize_title("Chapter 12: The Ember Gate!") == "the ember gate"
    assert normalize_title("  ch. 3 - Frost  ") == "frost"


def test_title_similarity():
    stop = frozenset({"the"})
    assert title_similarity("The Ember Gate", "the ember gate") == 1.0
    assert title_similarity("The Ember Gate", "Ember Gate", stop) == 1.0
    assert title_similarity("The Ember Gate", "The Frozen River", stop) == 0.0
    assert title_similarity("Ember 3", "Ember 4") < 0.7
    assert title_similarity("", "Ember") == 0.0


def test_title_checks(tracker):
    async def run():
        await tracker.record("ember", "title", "The Ember Gate")
        return (
            await tracker.check("ember", "title", "Chapter 5: the ember gate"),
            await tracker.check("ember", "title", "The Beginning"),
            await tracker.check("ember", "title", "Riders on the Ice"),
        )

    duplicate, banned, fresh = asyncio.run(run())

    assert not duplicate.accepted
    assert duplicate.near_duplicate_of == "The Ember Gate"
    assert duplicate.similarity == 1.0
    assert not banned.accepted
    assert fresh.accepted


def test_exact_and_near_duplicate_openings(tracker):
    async def run():
        await tracker.record("ember", "opening", OPENING)
        return (
            await tracker.check("ember", "opening", OPENING.upper().replace(",", "")),
            await tracker.check("ember", "opening", OPENING.replace("hundred", "thousand")),
            await tracker.check("ember", "opening", "The tavern was warm and loud when the stranger came in."),
        )

    exact, near, fresh = asyncio.run(run())

    assert not exact.accepted
    assert exact.similarity == 1.0
    assert not near.accepted
    assert near.near_duplicate_of == OPENING
    assert near.similarity >= 0.8
    assert fresh.accepted


def test_index_follows_history(tracker):
    async def run():
        first = await tracker.check("ember", "cliffhanger", OPENING)
        await tracker.record("ember", "cliffhanger", OPENING)
        second = await tracker.check("ember", "cliffhanger", OPENING)
        return first, second

    first, second = asyncio.run(run())
    assert first.accepted
    assert not second.accepted


def test_check_and_record(tracker):
    async def run():
        a = await tracker.check_and_record("ember", "title", "Riders on the Ice")
        b = await tracker.check_and_record("ember", "title", "Riders on the Ice")
        return a, b, await tracker.store.list_history("ember", "title")

    a, b, history = asyncio.run(run())
    assert a.accepted
    assert not b.accepted
    assert history == ["Riders on the Ice"]


def test_blank_record_is_ignored_and_unknown_kind_rejected(tracker):
    asyncio.run(tracker.record("ember", "opening", "   "))
    assert asyncio.run(tracker.store.list_history("ember", "opening")) == []
    with pytest.raises(ValueError):
        asyncio.run(tracker.check("ember", "summary", "anything"))


def test_negative_constraints(tracker):
    async def run():
        for i in range(4):
            await tracker.record("ember", "title", f"Title {i}")
        await tracker.record("ember", "cliffhanger", "The gate opened.")
        return await tracker.negative_constraints("ember", max_titles=2)

    negative = asyncio.run(run())

    assert negative.titles == ["Title 2", "Title 3"]
    assert negative.openings == []
    rendered = negative.render()
    assert "- Title 3" in rendered
    assert "Recent cliffhangers" in rendered
    assert "Recent opening lines" not in rendered
