"""Structural checks the quality gate runs on every draft."""

import re
from dataclasses import dataclass, field

from ..genres import GenreProfile, Range
from ..utils.text import count_words, sentence_spans
from .lexicon import get_language

DIALOGUE_RE = re.compile(r'"[^"\n]+"|“[^”\n]+”|«[^»\n]+»|「[^」\n]+」')
DASH_LINE_RE = re.compile(r'^[ \t]*[—–-][ \t]*\S.*$', re.MULTILINE)


@dataclass
class Composition:
    dialogue: float = 0.0
    description: float = 0.0
    inner: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {"dialogue": self.dialogue, "description": self.description, "inner": self.inner}


def _dialogue_spans(text: str) -> list[tuple[int, int]]:
    spans = [(m.start(), m.end()) for m in DIALOGUE_RE.finditer(text)]
    for m in DASH_LINE_RE.finditer(text):
        if not any(s <= m.start() < e for s, e in spans):
            spans.append((m.start(), m.end()))
    return sorted(spans)


def dialogue_segments(text: str) -> int:
    """Quoted spans plus dash-led dialogue lines."""
    return len(_dialogue_spans(text))


def _weight(text: str) -> int:
    return sum(1 for c in text if not c.isspace())


def estimate_composition(text: str, language: str = "en") -> Composition:
    """Estimate dialogue / interior monologue / description shares in percent.

    Dialogue is whatever sits inside quotes or on dash-led lines. Interior
    monologue is every remaining sentence carrying a thought marker.
    Description is the rest.
    """
    total = _weight(text)
    if total == 0:
        return Composition()

    spans = _dialogue_spans(text)
    dialogue = sum(_weight(text[s:e]) for s, e in spans)

    chars = list(text)
    for s, e in spans:
        chars[s:e] = " " * (e - s)
    narrative = "".join(chars)

    markers = [
        re.compile(r"(?<!\w)" + re.escape(m) + r"(?!\w)", re.IGNORECASE)
        for m in get_language(language).inner_markers
    ]
    inner = 0
    for s, e in sentence_spans(narrative):
        sentence = narrative[s:e]
        if any(p.search(sentence) for p in markers):
            inner += _weight(sentence)

    description = max(0, total - dialogue - inner)
    return Composition(
        dialogue=round(100 * dialogue / total, 1),
        description=round(100 * description / total, 1),
        inner=round(100 * inner / total, 1),
    )


@dataclass
class GateReport:
    word_count: int
    target_words: int
    min_words: int
    dialogue_segments: int
    min_dialogue_segments: int
    composition: Composition
    composition_violations: dict[str, tuple[float, Range]] = field(default_factory=dict)

    @property
    def word_ok(self) -> bool:
        return self.word_count >= self.min_words

    @property
    def dialogue_ok(self) -> bool:
        return self.dialogue_segments >= self.min_dialogue_segments

    @property
    def composition_ok(self) -> bool:
        return not self.composition_violations

    @property
    def passed(self) -> bool:
        return self.word_ok and self.dialogue_ok and self.composition_ok

    def violations(self) -> list[str]:
        out = []
        if not self.word_ok:
            out.append(f"word count {self.word_count} below {self.min_words} (target {self.target_words})")
        if not self.dialogue_ok:
            out.append(
                f"{self.dialogue_segments} dialogue segments, need at least {self.min_dialogue_segments}"
            )
        for axis, (value, target) in self.composition_violations.items():
            out.append(f"{axis} {value:.0f}% outside {target}")
        return out


def evaluate(
    text: str,
    profile: GenreProfile,
    target_words: int,
    language: str = "en",
    min_word_ratio: float = 0.8,
) -> GateReport:
    composition = estimate_composition(text, language)
    values = composition.as_dict()
    violations = {
        axis: (values[axis], target)
        for axis, target in profile.composition.axes().items()
        if not target.contains(values[axis])
    }
    return GateReport(
        word_count=count_words(text),
        target_words=target_words,
        min_words=int(target_words * min_word_ratio),
        dialogue_segments=dialogue_segments(text),
        min_dialogue_segments=profile.min_dialogue_segments,
        composition=composition,
        composition_violations=violations,
    )
