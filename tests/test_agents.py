import asyncio

import pytest

from serial_writer.agents import (
    analyze_chapter,
    as_bool,
    fallback_analysis,
    fallback_outline,
    parse_analysis,
    parse_outline,
    parse_report,
    plan_chapter,
    render_outline,
    review_chapter,
    write_chapter,
)
from serial_writer.client import BackendResponse
from serial_writer.errors import InvalidOutlineError, TransientGenerationError
from serial_writer.genres import get_genre
from serial_writer.memory import ContextPayload
from serial_writer.models import PlotThread
from serial_writer.quality import StyleAnalyzer, evaluate

from fakes import FakeBackend, make_analysis, make_client, make_outline, make_project, make_prose, make_review

FANTASY = get_genre("fantasy")


def outline(**overrides):
    data = make_outline()
    data.update(overrides)
    return parse_outline(data, 1, 2800, "Aria")


def review(backend, text, min_score=6):
    project = make_project()
    report = asyncio.run(review_chapter(
        make_client(backend), project, outline(), text,
        StyleAnalyzer("en").analyze(text), evaluate(text, FANTASY, 2800), min_score,
    ))
    return report


# ---- architect ----

def test_parse_outline():
    result = outline()

    assert result.title == "The Ember Gate"
    assert len(result.scenes) == 5
    assert result.scenes[0].characters == ["Aria"]
    assert result.target_word_count == 2800
    assert result.emotional_arc == {"opening": "doubt", "closing": "resolve"}
    assert not result.is_fallback


def test_outline_word_budget_is_scaled():
    scenes = make_outline()["scenes"]
    for s in scenes:
        s["estimated_words"] = 100
    assert [s.estimated_words for s in outline(scenes=scenes).scenes] == [560] * 5

    for s in scenes:
        s["estimated_words"] = "lots"
    assert [s.estimated_words for s in outline(scenes=scenes).scenes] == [560] * 5


def test_thin_outline_gets_filler_scenes():
    result = outline(scenes=[{"goal": "Cross the river", "characters": "Aria, Bren"}])

    assert len(result.scenes) == 5
    assert result.scenes[0].goal.startswith("Re-establish where the previous chapter left off")
    assert result.scenes[-1].resolution == "The gate opens onto a second, older gate."


def test_outline_field_aliases_and_clamping():
    data = {
        "title": "Riders",
        "tensionLevel": 250,
        "dopaminePoints": [{"description": "The horn sounds"}],
        "emotionalArc": {"opening": "calm"},
        "scenes": [{"order": "2", "goal": "a"}, {"goal": "b"}, {"goal": "c"}],
    }
    result = parse_outline(data, 4, 2800)

    assert result.tension_level == 100
    assert result.engagement_beats == ["The horn sounds"]
    assert result.emotional_arc == {"opening": "calm"}
    assert [s.order for s in result.scenes] == [2, 2, 3]


@pytest.mark.parametrize("data", [[], "text", {"summary": "no title, no scenes"}])
def test_invalid_outline(data):
    with pytest.raises(InvalidOutlineError):
        parse_outline(data, 1, 2800)


def test_plan_chapter_rejects_unparseable_reply():
    backend = FakeBackend().queue("architect", "I would rather not.")
    with pytest.raises(InvalidOutlineError):
        asyncio.run(plan_chapter(
            make_client(backend), make_project(), 1, ContextPayload(chapter_number=1), FANTASY, 2800
        ))


def test_plan_chapter_prompt():
    backend = FakeBackend()
    context = ContextPayload(chapter_number=7, essence="A courier carries fire.")

    result = asyncio.run(plan_chapter(
        make_client(backend), make_project(), 7, context, FANTASY, 2800, notes=["Use a new title"]
    ))

    prompt = backend.calls[0][1]
    assert result.chapter_number == 7
    assert "Chapter 7 of 200. Protagonist: Aria. Language: English." in prompt
    assert "at least 5 scenes" in prompt
    assert "## Story Essence\nA courier carries fire." in prompt
    assert "## Planning Notes\n- Use a new title" in prompt


def test_fallback_outline():
    result = fallback_outline(make_project(), 7, None, 2800)

    assert result.is_fallback
    assert result.title == "Continuation 7"
    assert len(result.scenes) == 5
    assert sum(s.estimated_words for s in result.scenes) == 2800
    assert result.cliffhanger


def test_render_outline():
    rendered = render_outline(outline())
    assert rendered.startswith("Title: The Ember Gate\n")
    assert "Scene 1 (~560 words) at Frost Ridge with Aria: goal: Goal 1" in rendered
    assert rendered.endswith("Cliffhanger: The gate opens onto a second, older gate.")


# ---- writer ----

def _write(backend, notes=None):
    return asyncio.run(write_chapter(
        make_client(backend), make_project(), outline(), ContextPayload(chapter_number=1), FANTASY, notes
    ))


def test_write_chapter():
    backend = FakeBackend()
    text = _write(backend)

    assert text == backend.prose
    assert backend.count("writer") == 1
    assert backend.count("continue") == 0
    prompt = backend.calls[0][1]
    assert prompt.startswith("## Chapter 1 Outline\nTitle: The Ember Gate")
    assert "Write the full chapter in English, about 2800 words." in prompt
    assert "Revision Instructions" not in prompt


def test_short_draft_gets_one_continuation():
    backend = FakeBackend(prose=make_prose(1000))
    text = _write(backend)

    assert backend.count("continue") == 1
    assert text.endswith("\n\nThe wind rose again, and the gate answered.")
    assert "Continue for at least 1800 more words." in backend.calls[1][1]


def test_truncated_draft_gets_continuation():
    prose = make_prose()
    backend = FakeBackend().queue("writer", BackendResponse(text=f"```\n{prose}\n```", finish_reason="length"))
    text = _write(backend)

    assert backend.count("continue") == 1
    assert text.startswith(prose[:50])
    assert "```" not in text


def test_rewrite_notes_reach_the_prompt():
    backend = FakeBackend()
    _write(backend, notes=["Cut the second scene"])
    assert "## Revision Instructions\n- Cut the second scene\nRewrite the chapter from scratch" in backend.calls[0][1]


# ---- critic ----

def test_critic_approves_good_chapter():
    report = review(FakeBackend(), make_prose())

    assert report.approved
    assert report.overall_score == 8
    assert report.word_ratio == 1.0
    assert report.gate_violations == []
    assert report.style_score is not None


def test_low_score_forces_rewrite():
    backend = FakeBackend().queue("critic", make_review(score=2, instructions="Start over"))
    report = review(backend, make_prose())

    assert report.requires_rewrite
    assert not report.approved
    assert report.rewrite_instructions == "Start over"
    assert report.issues[0].severity == "major"


def test_short_chapter_is_never_approved():
    backend = FakeBackend().queue("critic", make_review(score=9))
    report = review(backend, make_prose(2000))

    assert not report.approved
    assert not report.requires_rewrite
    assert "only 71% of the 2800-word target" in report.rewrite_instructions

    very_short = review(FakeBackend(), make_prose(1000))
    assert very_short.requires_rewrite


@pytest.mark.parametrize("reply", ["no opinion", [1, 2, 3]])
def test_critic_fails_closed(reply):
    backend = FakeBackend().queue("critic", reply)
    report = review(backend, make_prose())

    assert report.overall_score == 5
    assert not report.approved
    assert report.rewrite_instructions


def test_parse_report():
    report = parse_report({"overall_score": 15, "issues": ["Flat dialogue", {"severity": "MAJOR"}]}, 0.9)
    assert report.overall_score == 10
    assert report.engagement_score == 10
    assert [i.description for i in report.issues] == ["Flat dialogue", ""]
    assert report.issues[1].severity == "major"

    assert parse_report({"score": "7.5"}, 1.0).overall_score == 7.5
    assert parse_report({}, 1.0).overall_score == 5


@pytest.mark.parametrize("flag,expected", [
    ("false", False),
    ("False", False),
    ("no", False),
    (0, False),
    ("true", True),
    ("YES", True),
    (1, True),
    (True, True),
    (None, False),
    ("sometimes", False),
])
def test_parse_report_reads_rewrite_flag(flag, expected):
    assert parse_report({"overall_score": 8, "requires_rewrite": flag}, 1.0).requires_rewrite is expected


@pytest.mark.parametrize("value,expected", [("false", False), ("true", True), (False, False), ("unknown", None), (None, None)])
def test_as_bool(value, expected):
    assert as_bool(value) is expected


# ---- analyst ----

def test_parse_analysis_filters_thread_ids():
    data = make_analysis(
        resolved_threads=["crown", "ghost"],
        advanced_threads=["crown", "debt"],
        new_threads=[{"description": "A stranger's map", "priority": "MAIN", "characters": "Aria"}, {}],
        character_updates=[
            {"name": "Bren", "alive": "no", "relationships": {"Aria": "ally"}, "abilities": "Warding"},
            {"health": "fine"},
        ],
    )

    analysis = parse_analysis(data, {"crown", "debt"})

    assert analysis.resolved_threads == ["crown"]
    assert analysis.advanced_threads == ["debt"]
    assert len(analysis.new_threads) == 1
    assert analysis.new_threads[0].priority == "main"
    assert analysis.new_threads[0].characters == ["Aria"]
    assert len(analysis.character_updates) == 1
    bren = analysis.character_updates[0]
    assert bren.alive is False
    assert bren.relationships == {"Aria": "ally"}
    assert bren.abilities == ["Warding"]


def _analyze(backend, text="Aria crossed the river. The gate burned. She knelt. Then it opened."):
    threads = [PlotThread(id="crown", description="The stolen crown")]
    return asyncio.run(analyze_chapter(
        make_client(backend), make_project(), 3, "The Ember Gate", text, threads, ["Aria"]
    ))


def test_analyze_chapter():
    backend = FakeBackend().queue("analyst", make_analysis(resolved_threads=["crown"], cliffhanger=""))
    analysis = _analyze(backend)

    assert analysis.resolved_threads == ["crown"]
    assert analysis.cliffhanger == "Then it opened."
    assert not analysis.is_fallback
    assert "- crown: The stolen crown" in backend.calls[0][1]


def test_analyst_falls_back_on_bad_reply():
    analysis = _analyze(FakeBackend().queue("analyst", "It was a fine chapter."))

    assert analysis.is_fallback
    assert analysis.summary == "Aria crossed the river. The gate burned. She knelt."
    assert analysis.cliffhanger == "Then it opened."
    assert analysis.resolved_threads == []


def test_analyst_falls_back_when_retries_run_out():
    failures = [TransientGenerationError("unavailable", status_code=503) for _ in range(4)]
    analysis = _analyze(FakeBackend().queue("analyst", *failures))
    assert analysis.is_fallback


def test_fallback_analysis_of_empty_text():
    analysis = fallback_analysis("")
    assert analysis.summary == ""
    assert analysis.cliffhanger == ""
