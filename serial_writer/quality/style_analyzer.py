"""Heuristic prose linter.

Scores a chapter on seven independent axes, each from 0 to 100, and keeps
the offending spans so rewrite prompts can quote them back to the Writer.
No model calls; everything here is regex and counting.
"""

import re
import statistics
from dataclasses import dataclass, field

from ..utils.text import sentence_spans
from .lexicon import LanguageProfile, get_language

WORD_RE = re.compile(r"[^\W\d_]+(?:['’][^\W\d_]+)?", re.UNICODE)
QUOTE_CHARS = '"“”«»「」'

ISSUE_THRESHOLD = 70
MAJOR_THRESHOLD = 50
MAX_SPANS = 10
SHORT_SENTENCE = 8
LONG_SENTENCE = 25
EXPOSITION_MIN_CHARS = 300

# -ly words that are not adverbs
_LY_EXCEPTIONS = frozenset({
    "only", "family", "early", "holy", "reply", "supply", "belly", "fly",
    "ally", "lonely", "friendly", "ugly", "silly", "daily", "jelly", "rely",
    "apply", "bully", "lily", "hilly", "july", "italy", "assembly", "butterfly",
})

ISSUE_MESSAGES = {
    "weak_verbs": "Overused weak verbs; swap them for specific action verbs",
    "modifiers": "Too many adverbs and intensifiers; let verbs and nouns carry the weight",
    "tell_not_show": "Emotions are stated instead of shown through action and dialogue",
    "purple_prose": "Ornate phrasing distracts from the scene",
    "passive_voice": "Frequent passive constructions slow the pace",
    "sentence_variety": "Sentence lengths are too uniform or too erratic",
    "exposition": "Long exposition blocks without dialogue or action",
}


@dataclass
class Span:
    start: int
    end: int
    text: str


@dataclass
class AxisResult:
    name: str
    score: float
    spans: list[Span] = field(default_factory=list)
    detail: str = ""


@dataclass
class StyleIssue:
    axis: str
    severity: str
    message: str
    examples: list[str] = field(default_factory=list)


@dataclass
class StyleReport:
    score: float
    axes: dict[str, AxisResult] = field(default_factory=dict)
    issues: list[StyleIssue] = field(default_factory=list)
    word_count: int = 0
    sentence_count: int = 0

    def worst_axes(self, n: int = 3) -> list[AxisResult]:
        return sorted(self.axes.values(), key=lambda a: a.score)[:n]


@dataclass
class QuickCheck:
    ok: bool
    headline: str | None = None


def _clamp(score: float) -> float:
    return round(max(0.0, min(100.0, score)), 1)


def _term_pattern(term: str) -> re.Pattern:
    return re.compile(r"(?<![\w])" + re.escape(term) + r"(?![\w])", re.IGNORECASE)


class StyleAnalyzer:
    """Stateless scorer; one instance per language profile."""

    def __init__(self, language: str | LanguageProfile = "en"):
        self.profile = language if isinstance(language, LanguageProfile) else get_language(language)
        self._weak = [(v, _term_pattern(v)) for v in self.profile.weak_verbs]
        self._modifiers = {m.lower() for m in self.profile.modifiers}
        self._tell = [re.compile(p, re.IGNORECASE) for p in self.profile.tell_patterns]
        self._purple = [re.compile(p, re.IGNORECASE) for p in self.profile.purple_patterns]
        self._passive = [re.compile(p, re.IGNORECASE) for p in self.profile.passive_patterns]
        self._actions = [_term_pattern(a) for a in self.profile.action_markers]
        self._info = [_term_pattern(w) for w in self.profile.info_dump_words]

    # ---- helpers ----

    def _words(self, text: str) -> list[re.Match]:
        return list(WORD_RE.finditer(text))

    def _is_modifier(self, word: str) -> bool:
        w = word.lower()
        if w in self._modifiers:
            return True
        suffix = self.profile.modifier_suffix
        return bool(suffix) and len(w) > 4 and w.endswith(suffix) and w not in _LY_EXCEPTIONS

    def _weak_counts(self, text: str) -> dict[str, list[re.Match]]:
        return {verb: list(p.finditer(text)) for verb, p in self._weak}

    def _tell_sentences(self, text: str, spans: list[tuple[int, int]]) -> list[Span]:
        hits = []
        for s, e in spans:
            sentence = text[s:e]
            if any(p.search(sentence) for p in self._tell):
                hits.append(Span(s, e, sentence))
        return hits

    # ---- axes ----

    def weak_verbs(self, text: str, word_count: int) -> AxisResult:
        overused = {v: ms for v, ms in self._weak_counts(text).items() if len(ms) > 3}
        count = sum(len(ms) for ms in overused.values())
        ratio = count / max(word_count, 1)
        spans = [Span(m.start(), m.end(), m.group()) for ms in overused.values() for m in ms]
        spans.sort(key=lambda s: s.start)
        detail = ", ".join(f"{v} x{len(ms)}" for v, ms in sorted(overused.items(), key=lambda kv: -len(kv[1])))
        return AxisResult("weak_verbs", _clamp(100 - ratio * 500), spans[:MAX_SPANS], detail)

    def modifiers(self, text: str, words: list[re.Match]) -> AxisResult:
        hits = [m for m in words if self._is_modifier(m.group())]
        ratio = len(hits) / max(len(words), 1)
        spans = [Span(m.start(), m.end(), m.group()) for m in hits[:MAX_SPANS]]
        return AxisResult("modifiers", _clamp(100 - ratio * 300), spans, f"{len(hits)} modifiers")

    def tell_not_show(self, text: str, spans: list[tuple[int, int]]) -> AxisResult:
        hits = self._tell_sentences(text, spans)
        ratio = len(hits) / max(len(spans), 1)
        return AxisResult("tell_not_show", _clamp(100 - ratio * 200), hits[:MAX_SPANS], f"{len(hits)} telling sentences")

    def purple_prose(self, text: str) -> AxisResult:
        hits = [m for p in self._purple for m in p.finditer(text)]
        hits.sort(key=lambda m: m.start())
        spans = [Span(m.start(), m.end(), m.group()) for m in hits[:MAX_SPANS]]
        return AxisResult("purple_prose", _clamp(100 - 10 * len(hits)), spans, f"{len(hits)} ornate phrases")

    def passive_voice(self, text: str, spans: list[tuple[int, int]]) -> AxisResult:
        hits = []
        for s, e in spans:
            if any(p.search(text[s:e]) for p in self._passive):
                hits.append(Span(s, e, text[s:e]))
        percent = 100 * len(hits) / max(len(spans), 1)
        return AxisResult("passive_voice", _clamp(100 - percent), hits[:MAX_SPANS], f"{percent:.0f}% passive")

    def sentence_variety(self, text: str, spans: list[tuple[int, int]]) -> AxisResult:
        lengths = [len(WORD_RE.findall(text[s:e])) for s, e in spans]
        lengths = [n for n in lengths if n > 0]
        if len(lengths) < 3:
            return AxisResult("sentence_variety", 70.0, [], "too few sentences to judge")

        stdev = statistics.pstdev(lengths)
        short_ratio = 100 * sum(1 for n in lengths if n < SHORT_SENTENCE) / len(lengths)
        long_ratio = 100 * sum(1 for n in lengths if n > LONG_SENTENCE) / len(lengths)

        score = 70.0
        if stdev < 3:
            score -= 20
        elif stdev > 20:
            score -= 10
        elif 5 <= stdev <= 15:
            score += 15
        if short_ratio < 10 or short_ratio > 50:
            score -= 10
        if long_ratio > 30:
            score -= 10

        long_spans = [
            Span(s, e, text[s:e]) for s, e in spans
            if len(WORD_RE.findall(text[s:e])) > LONG_SENTENCE
        ]
        detail = f"stdev {stdev:.1f}, short {short_ratio:.0f}%, long {long_ratio:.0f}%"
        return AxisResult("sentence_variety", _clamp(score), long_spans[:MAX_SPANS], detail)

    def exposition_dumps(self, text: str) -> AxisResult:
        dumps = []
        for m in re.finditer(r"[^\n]+", text):
            block = m.group()
            if len(block) <= EXPOSITION_MIN_CHARS:
                continue
            if any(q in block for q in QUOTE_CHARS):
                continue
            if any(p.search(block) for p in self._actions):
                continue
            vocab_hits = sum(1 for p in self._info if p.search(block))
            if vocab_hits >= 2:
                dumps.append(Span(m.start(), m.end(), block))
        return AxisResult("exposition", _clamp(100 - 25 * len(dumps)), dumps[:MAX_SPANS], f"{len(dumps)} exposition blocks")

    # ---- entry points ----

    def analyze(self, text: str) -> StyleReport:
        """Run every axis and collect issues for the ones under threshold.

        Args:
            text: Chapter prose.

        Returns:
            StyleReport with the averaged score, per-axis results and issues.
        """
        words = self._words(text)
        spans = sentence_spans(text)
        axes = [
            self.weak_verbs(text, len(words)),
            self.modifiers(text, words),
            self.tell_not_show(text, spans),
            self.purple_prose(text),
            self.passive_voice(text, spans),
            self.sentence_variety(text, spans),
            self.exposition_dumps(text),
        ]
        issues = []
        for axis in axes:
            if axis.score < ISSUE_THRESHOLD:
                issues.append(StyleIssue(
                    axis=axis.name,
                    severity="major" if axis.score < MAJOR_THRESHOLD else "minor",
                    message=ISSUE_MESSAGES[axis.name],
                    examples=[s.text[:160] for s in axis.spans[:3]],
                ))
        score = round(sum(a.score for a in axes) / len(axes), 1)
        return StyleReport(
            score=score,
            axes={a.name: a for a in axes},
            issues=issues,
            word_count=len(words),
            sentence_count=len(spans),
        )

    def quick_check(self, text: str) -> QuickCheck:
        """Cheap gate: weak verbs, modifiers and telling only."""
        words = self._words(text)
        total = max(len(words), 1)
        weak = sum(len(ms) for ms in self._weak_counts(text).values())
        if weak / total > 0.15:
            return QuickCheck(False, "Too many weak verbs; use concrete action verbs")
        modifiers = sum(1 for m in words if self._is_modifier(m.group()))
        if modifiers / total > 0.08:
            return QuickCheck(False, "Too many adverbs and intensifiers")
        spans = sentence_spans(text)
        tell = len(self._tell_sentences(text, spans))
        if tell / max(len(spans), 1) > 0.3:
            return QuickCheck(False, "Emotions are told rather than shown")
        return QuickCheck(True)


def build_style_guidelines(report: StyleReport, max_issues: int = 5) -> str:
    """Turn a report into concrete instructions for a rewrite prompt."""
    if not report.issues:
        return ""
    lines = [f"Style score {report.score:.0f}/100. Fix the following:"]
    ordered = sorted(report.issues, key=lambda i: (i.severity != "major", report.axes[i.axis].score))
    for issue in ordered[:max_issues]:
        lines.append(f"- [{issue.severity}] {issue.message}")
        for example in issue.examples[:2]:
            lines.append(f'    e.g. "{example}"')
    return "\n".join(lines)
