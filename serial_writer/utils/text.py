"""Text helpers shared by the agents, the quality gate and the memory layer."""

import json
import re

SENTENCE_RE = re.compile(r'[^.!?。！？\n]+[.!?。！？…]*["”’»)]*')
_FENCE_RE = re.compile(r'```(?:json)?\s*\n(.*?)\n```', re.DOTALL)
_LINE_COMMENT_RE = re.compile(r'^\s*//.*$', re.MULTILINE)
_TRAILING_COMMA_RE = re.compile(r',\s*([}\]])')


def detect_language(text: str) -> str:
    """Detect if text is primarily CJK or Latin script.

    Returns "zh" or "en".
    """
    sample = text[:500]
    cjk_count = sum(1 for c in sample if '一' <= c <= '鿿')
    total_alpha = max(
        1, sum(1 for c in sample if c.isalpha() or '一' <= c <= '鿿')
    )
    return "zh" if (cjk_count / total_alpha) > 0.3 else "en"


def count_words(text: str) -> int:
    """Count words; CJK text counts one word per ideograph."""
    if not text:
        return 0
    cjk = sum(1 for c in text if '一' <= c <= '鿿')
    if cjk and detect_language(text) == "zh":
        return cjk
    return len(text.split())


def clean_content(text: str) -> str:
    """Strip markdown decoration a model sometimes wraps around prose."""
    if not text:
        return ""
    text = re.sub(r'^```[a-z]*\s*$', '', text, flags=re.MULTILINE)
    text = re.sub(r'^#{1,6}\s+.*$', '', text, flags=re.MULTILINE)
    text = re.sub(r'^\s*(?:-{3,}|\*{3,}|_{3,})\s*$', '', text, flags=re.MULTILINE)
    text = re.sub(r'\*\*(.+?)\*\*', r'\1', text)
    text = re.sub(r'(?<!\w)_(.+?)_(?!\w)', r'\1', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def sentence_spans(text: str) -> list[tuple[int, int]]:
    """Character offsets of every sentence, leading/trailing blanks trimmed."""
    spans = []
    for m in SENTENCE_RE.finditer(text):
        start, end = m.start(), m.end()
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        if end > start:
            spans.append((start, end))
    return spans


def split_sentences(text: str) -> list[str]:
    return [text[s:e] for s, e in sentence_spans(text)]


def first_sentence(text: str) -> str:
    for s, e in sentence_spans(text):
        return text[s:e]
    return ""


def last_sentence(text: str) -> str:
    spans = sentence_spans(text)
    if not spans:
        return ""
    s, e = spans[-1]
    return text[s:e]


def _close_open_structures(text: str) -> str:
    """Append the closers needed to balance brackets outside strings."""
    stack = []
    in_str = False
    esc = False
    for c in text:
        if esc:
            esc = False
            continue
        if c == '\\' and in_str:
            esc = True
            continue
        if c == '"':
            in_str = not in_str
            continue
        if in_str:
            continue
        if c in '{[':
            stack.append('}' if c == '{' else ']')
        elif c in '}]' and stack:
            stack.pop()
    return ''.join(reversed(stack))


def _repair_truncated_json(text: str):
    """Walk back to the last complete value and close everything still open."""
    if not text or text[0] not in '{[':
        raise ValueError("not a JSON structure")
    end = len(text)
    while end > 0:
        cut = max(text.rfind(ch, 0, end) for ch in '}]"')
        if cut <= 0:
            break
        candidate = text[:cut + 1].rstrip().rstrip(',')
        try:
            return json.loads(candidate + _close_open_structures(candidate))
        except json.JSONDecodeError:
            end = cut
    raise ValueError("could not repair truncated JSON")


def _loads_lenient(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    cleaned = _TRAILING_COMMA_RE.sub(r'\1', _LINE_COMMENT_RE.sub('', text))
    return json.loads(cleaned)


def parse_json_response(text: str) -> dict | list:
    """Extract JSON from an LLM response that may contain markdown fences."""
    if not text:
        raise ValueError("Could not parse JSON from empty response")
    m = _FENCE_RE.search(text)
    if m:
        try:
            return _loads_lenient(m.group(1))
        except json.JSONDecodeError:
            pass
    cleaned = text.strip()
    if cleaned.startswith('{') or cleaned.startswith('['):
        try:
            return _loads_lenient(cleaned)
        except json.JSONDecodeError:
            pass
    # Outermost structure, objects first: agents are asked for objects
    for open_ch, close_ch in [('{', '}'), ('[', ']')]:
        start = cleaned.find(open_ch)
        if start == -1:
            continue
        end = cleaned.rfind(close_ch)
        if end > start:
            try:
                return _loads_lenient(cleaned[start:end + 1])
            except json.JSONDecodeError:
                pass
    for open_ch in ('{', '['):
        start = cleaned.find(open_ch)
        if start != -1:
            try:
                return _repair_truncated_json(cleaned[start:])
            except ValueError:
                pass
    raise ValueError(f"Could not parse JSON from response: {text[:200]}...")


def truncate_text(text: str, max_chars: int, from_end: bool = False) -> str:
    """Truncate text at sentence boundaries.

    Args:
        text: The text to truncate.
        max_chars: Maximum number of characters.
        from_end: If True, keep the end of the text instead of the beginning.
    """
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max(max_chars, 0)]

    seps = ['. ', '。', '！', '？', '! ', '? ', '\n']
    if from_end:
        chunk = text[-max_chars:]
        for sep in seps:
            idx = chunk.find(sep)
            if idx != -1 and idx < 200:
                return chunk[idx + len(sep):]
        return "..." + text[-(max_chars - 3):]

    chunk = text[:max_chars - 3]
    best = -1
    for sep in seps:
        idx = chunk.rfind(sep)
        if idx != -1 and idx >= max_chars - 200:
            best = max(best, idx + len(sep.rstrip()))
    if best <= 0:
        best = max(max_chars - 3, 0)
    return text[:best].rstrip() + "..."
