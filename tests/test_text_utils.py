import pytest

from serial_writer.utils.text import (
    clean_content,
    count_words,
    detect_language,
    first_sentence,
    last_sentence,
    parse_json_response,
    split_sentences,
    truncate_text,
)


def test_parse_plain_json():
    assert parse_json_response('{"title": "A"}') == {"title": "A"}


def test_parse_fenced_json():
    text = 'Here you go:\n```json\n{"score": 7}\n```\nThanks'
    assert parse_json_response(text) == {"score": 7}


def test_parse_json_with_prose_around_it():
    text = 'Sure. {"a": [1, 2], "b": "x"} Hope this helps.'
    assert parse_json_response(text) == {"a": [1, 2], "b": "x"}


def test_parse_json_with_comments_and_trailing_commas():
    text = '{\n  // the title\n  "title": "A",\n  "scenes": [1, 2,],\n}'
    assert parse_json_response(text) == {"title": "A", "scenes": [1, 2]}


def test_parse_truncated_json():
    text = '{"title": "The Gate", "scenes": [{"order": 1}, {"order": 2}, {"ord'
    data = parse_json_response(text)
    assert data["title"] == "The Gate"
    assert data["scenes"][:2] == [{"order": 1}, {"order": 2}]


def test_parse_garbage_raises():
    with pytest.raises(ValueError):
        parse_json_response("no structure here")
    with pytest.raises(ValueError):
        parse_json_response("")


def test_truncate_text_respects_limit():
    text = "First sentence here. " * 50
    out = truncate_text(text, 100)
    assert len(out) <= 100
    assert out.endswith("...")
    assert truncate_text("short", 100) == "short"
    assert truncate_text("abcdef", 2) == "ab"


def test_truncate_text_from_end():
    text = "Alpha one. " * 30 + "The final line."
    out = truncate_text(text, 60, from_end=True)
    assert len(out) <= 60
    assert out.endswith("The final line.")


def test_count_words():
    assert count_words("") == 0
    assert count_words("one two  three\nfour") == 4
    assert count_words("天还没有亮") == 5


def test_detect_language():
    assert detect_language("The river was cold.") == "en"
    assert detect_language("天还没有亮，整个村庄都笼罩在寂静之中。") == "zh"


def test_clean_content_strips_markdown():
    raw = "```\n# Chapter 3\n**The** gate opened.\n---\nShe ran.\n```"
    assert clean_content(raw) == "The gate opened.\n\nShe ran."


def test_sentences():
    text = 'She stopped. "Who is there?" he asked.\nNobody answered!'
    assert split_sentences(text) == ["She stopped.", '"Who is there?"', "he asked.", "Nobody answered!"]
    assert first_sentence(text) == "She stopped."
    assert last_sentence(text) == "Nobody answered!"
    assert last_sentence("") == ""
