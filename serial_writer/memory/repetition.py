"""Near-duplicate detection for chapter titles, openings and cliffhangers."""

import hashlib
import re
from dataclasses import dataclass, field

from datasketch import MinHash, MinHashLSH
from loguru import logger

from ..quality.lexicon import get_language
from ..storage import HISTORY_KINDS, StoryStore

BANNED_TITLES = frozenset({
    "untitled", "chapter", "new chapter", "the beginning", "a new beginning",
    "the journey begins", "a new journey", "the end", "continued", "to be continued",
})

_CHAPTER_PREFIX_RE = re.compile(r"^\s*(?:chapter|chương|ch\.)\s*\d+\s*[:.\-–—]?\s*", re.IGNORECASE)
_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)


@dataclass
class RepetitionVerdict:
    accepted: bool
    kind: str
    candidate: str
    near_duplicate_of: str | None = None
    similarity: float = 0.0


@dataclass
class NegativeConstraints:
    titles: list[str] = field(default_factory=list)
    openings: list[str] = field(default_factory=list)
    cliffhangers: list[str] = field(default_factory=list)

    def render(self) -> str:
        parts = []
        if self.titles:
            parts.append("Titles already used (do not reuse or paraphrase):\n" + "\n".join(f"- {t}" for t in self.titles))
        if self.openings:
            parts.append("Recent opening lines (open differently):\n" + "\n".join(f"- {o}" for o in self.openings))
        if self.cliffhangers:
            parts.append("Recent cliffhangers (do not repeat):\n" + "\n".join(f"- {c}" for c in self.cliffhangers))
        return "\n\n".join(parts)


def normalize_title(title: str) -> str:
    title = _CHAPTER_PREFIX_RE.sub("", title or "")
    return " ".join(_PUNCT_RE.sub(" ", title.lower()).split())


def title_similarity(a: str, b: str, stop_words: frozenset[str] = frozenset()) -> float:
    """0.4 * Jaccard + 0.6 * containment over meaningful words; 1.0 on exact match."""
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    wa = {w for w in na.split() if w not in stop_words and (len(w) > 1 or w.isdigit())}
    wb = {w for w in nb.split() if w not in stop_words and (len(w) > 1 or w.isdigit())}
    if not wa or not wb:
        return 0.0
    common = len(wa & wb)
    jaccard = common / len(wa | wb)
    containment = common / min(len(wa), len(wb))
    return round(0.4 * jaccard + 0.6 * containment, 3)


@dataclass
class _Index:
    size: int = 0
    lsh: MinHashLSH | None = None
    hashes: dict[str, MinHash] = field(default_factory=dict)
    texts: dict[str, str] = field(default_factory=dict)
    exact: dict[str, str] = field(default_factory=dict)


class AntiRepetitionTracker:
    """Checks candidates against three append-only per-project lists.

    Titles use word-level fuzzy similarity. Openings and cliffhangers use
    MinHash over character n-grams, indexed with LSH.
    """

    def __init__(
        self,
        store: StoryStore,
        title_threshold: float = 0.7,
        text_threshold: float = 0.8,
        num_perm: int = 128,
        ngram_size: int = 5,
        language: str = "en",
    ):
        self.store = store
        self.title_threshold = title_threshold
        self.text_threshold = text_threshold
        self.num_perm = num_perm
        self.ngram_size = ngram_size
        self.stop_words = get_language(language).stop_words
        self._indexes: dict[tuple[str, str], _Index] = {}

    @staticmethod
    def _normalize_text(text: str) -> str:
        return " ".join(_PUNCT_RE.sub(" ", (text or "").lower()).split())

    def create_minhash(self, text: str) -> MinHash:
        m = MinHash(num_perm=self.num_perm)
        for i in range(len(text) - self.ngram_size + 1):
            m.update(text[i:i + self.ngram_size].encode("utf-8"))
        return m

    def _index(self, project_id: str, kind: str, history: list[str]) -> _Index:
        key = (project_id, kind)
        index = self._indexes.get(key)
        if index is None or index.size != len(history):
            index = _Index(lsh=MinHashLSH(threshold=self.text_threshold, num_perm=self.num_perm))
            for i, item in enumerate(history):
                self._add(index, f"{i}", item)
            index.size = len(history)
            self._indexes[key] = index
        return index

    def _add(self, index: _Index, key: str, text: str) -> None:
        norm = self._normalize_text(text)
        if not norm:
            return
        index.exact.setdefault(hashlib.md5(norm.encode()).hexdigest(), text)
        if len(norm) >= self.ngram_size:
            m = self.create_minhash(norm)
            index.lsh.insert(key, m)
            index.hashes[key] = m
            index.texts[key] = text

    async def check(self, project_id: str, kind: str, candidate: str) -> RepetitionVerdict:
        if kind not in HISTORY_KINDS:
            raise ValueError(f"Unknown repetition kind '{kind}'")
        history = await self.store.list_history(project_id, kind)
        if kind == "title":
            return self._check_title(candidate, history)
        return self._check_text(project_id, kind, candidate, history)

    def _check_title(self, candidate: str, history: list[str]) -> RepetitionVerdict:
        norm = normalize_title(candidate)
        if not norm or norm in BANNED_TITLES:
            return RepetitionVerdict(False, "title", candidate, near_duplicate_of=candidate, similarity=1.0)
        best, best_score = None, 0.0
        for previous in history:
            score = title_similarity(candidate, previous, self.stop_words)
            if score > best_score:
                best, best_score = previous, score
        if best is not None and best_score >= self.title_threshold:
            return RepetitionVerdict(False, "title", candidate, near_duplicate_of=best, similarity=best_score)
        return RepetitionVerdict(True, "title", candidate, similarity=best_score)

    def _check_text(self, project_id: str, kind: str, candidate: str, history: list[str]) -> RepetitionVerdict:
        norm = self._normalize_text(candidate)
        if not norm:
            return RepetitionVerdict(True, kind, candidate)
        index = self._index(project_id, kind, history)
        exact = index.exact.get(hashlib.md5(norm.encode()).hexdigest())
        if exact is not None:
            return RepetitionVerdict(False, kind, candidate, near_duplicate_of=exact, similarity=1.0)
        if len(norm) < self.ngram_size:
            return RepetitionVerdict(True, kind, candidate)
        m = self.create_minhash(norm)
        best, best_score = None, 0.0
        for key in index.lsh.query(m):
            score = m.jaccard(index.hashes[key])
            if score > best_score:
                best, best_score = index.texts[key], score
        if best is not None and best_score >= self.text_threshold:
            return RepetitionVerdict(False, kind, candidate, near_duplicate_of=best, similarity=round(best_score, 3))
        return RepetitionVerdict(True, kind, candidate, similarity=round(best_score, 3))

    async def record(self, project_id: str, kind: str, text: str) -> None:
        if not text or not text.strip():
            return
        await self.store.append_history(project_id, kind, text.strip())

    async def check_and_record(self, project_id: str, kind: str, candidate: str) -> RepetitionVerdict:
        verdict = await self.check(project_id, kind, candidate)
        if verdict.accepted:
            await self.record(project_id, kind, candidate)
        else:
            logger.info(
                f"Rejected {kind} '{candidate[:60]}' as near-duplicate of "
                f"'{(verdict.near_duplicate_of or '')[:60]}' ({verdict.similarity:.2f})"
            )
        return verdict

    async def negative_constraints(
        self,
        project_id: str,
        max_titles: int = 50,
        max_openings: int = 10,
        max_cliffhangers: int = 10,
    ) -> NegativeConstraints:
        return NegativeConstraints(
            titles=await self.store.list_history(project_id, "title", max_titles),
            openings=await self.store.list_history(project_id, "opening", max_openings),
            cliffhangers=await self.store.list_history(project_id, "cliffhanger", max_cliffhangers),
        )
