"""Similarity retrieval over passages of earlier chapters.

At commit a chapter is cut into chunks: its summary as a key event, then
groups of paragraphs of roughly `chunk_target_words` words. Each chunk is
embedded and stored. Before writing chapter N a query built from the last
cliffhanger, the arc plan and the protagonist is embedded, and the closest
chunks from chapters older than the recent window are returned.
"""

import re
from dataclasses import dataclass

import numpy as np
from loguru import logger

from ..client import GenerationClient
from ..config import MemoryConfig
from ..models import MemoryChunk, Project
from ..storage import StoryStore

CHUNK_PATTERNS = [
    ("character_event", re.compile(
        r"\b(?:breakthrough|cultivat\w*|realms?|pills?|meridians?|awaken\w*"
        r"|đột phá|tu luyện|cảnh giới|đan dược|luyện thể|đan điền|ngưng tụ|hóa thần)\b",
        re.IGNORECASE,
    )),
    ("plot_point", re.compile(
        r"\b(?:secret\w*|discover\w*|reveal\w*|truth|conspiracy|scheme\w*|lineage"
        r"|bí mật|phát hiện|tiết lộ|chân tướng|âm mưu|kế hoạch|thân thế)\b",
        re.IGNORECASE,
    )),
    ("scene", re.compile(
        r"\b(?:battle\w*|fight\w*|attack\w*|defen[cs]e|sword\w*|duel\w*|formation"
        r"|chiến đấu|giao chiến|tấn công|phòng thủ|kiếm thuật|quyền cước|trận pháp)\b",
        re.IGNORECASE,
    )),
    ("world_detail", re.compile(
        r"\b(?:sect|city|continent|kingdom|empire|region|border\w*"
        r"|tông môn|thành phố|đại lục|vương quốc|miền|khu vực|biên giới)\b",
        re.IGNORECASE,
    )),
]

KIND_ORDER = ("key_event", "plot_point", "character_event", "scene", "world_detail")
KIND_LABELS = {
    "key_event": "key event",
    "plot_point": "plot point",
    "character_event": "character event",
    "scene": "scene",
    "world_detail": "world detail",
}
QUERY_PART_CHARS = 500
LINE_CHARS = 800


def detect_kind(text: str) -> str:
    for kind, pattern in CHUNK_PATTERNS:
        if pattern.search(text):
            return kind
    return "scene"


def chunk_chapter(
    chapter_number: int,
    title: str,
    text: str,
    summary: str,
    characters: list[str],
    config: MemoryConfig | None = None,
) -> list[MemoryChunk]:
    """Split a chapter into retrieval chunks. The summary chunk always comes first."""
    cfg = config or MemoryConfig()
    chunks = [MemoryChunk(
        chapter_number=chapter_number,
        index=0,
        kind="key_event",
        content=f'Ch.{chapter_number} "{title}": {summary}'[:cfg.chunk_max_chars],
        characters=list(characters),
    )]

    def add(passage: str) -> None:
        content = passage[:cfg.chunk_max_chars]
        chunks.append(MemoryChunk(
            chapter_number=chapter_number,
            index=len(chunks),
            kind=detect_kind(content),
            content=content,
            characters=[c for c in characters if c in content],
        ))

    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text)]
    buffer: list[str] = []
    words = 0
    for paragraph in paragraphs:
        if len(paragraph) < cfg.chunk_min_paragraph_chars:
            continue
        buffer.append(paragraph)
        words += len(paragraph.split())
        if words >= cfg.chunk_target_words:
            add("\n\n".join(buffer))
            buffer, words = [], 0
    if buffer:
        add("\n\n".join(buffer))
    return chunks


def cosine_scores(query: list[float], vectors: list[list[float]]) -> np.ndarray:
    matrix = np.asarray(vectors, dtype=float)
    q = np.asarray(query, dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    return np.divide(matrix @ q, norms, out=np.zeros(len(vectors)), where=norms > 0)


@dataclass
class RetrievedChunk:
    chunk: MemoryChunk
    score: float


class ChapterRetriever:
    def __init__(self, store: StoryStore, client: GenerationClient, config: MemoryConfig | None = None):
        self.store = store
        self.client = client
        self.config = config or MemoryConfig()

    async def index_chapter(
        self,
        project: Project,
        chapter: int,
        title: str,
        text: str,
        summary: str,
        characters: list[str],
    ) -> list[MemoryChunk]:
        """Chunk, embed and store a committed chapter. Chunks whose embedding failed keep None."""
        if not self.config.retrieval_enabled:
            return []
        chunks = chunk_chapter(chapter, title, text, summary, characters, self.config)
        vectors = await self.client.embed([c.content for c in chunks], task_type="RETRIEVAL_DOCUMENT")
        for chunk, vector in zip(chunks, vectors):
            chunk.embedding = vector
        await self.store.save_chunks(project.id, chapter, chunks)
        embedded = sum(1 for c in chunks if c.embedding)
        logger.debug(f"[{project.id}] Indexed chapter {chapter}: {len(chunks)} chunks, {embedded} embedded")
        return chunks

    def build_query(self, project: Project, chapter: int, cliffhanger: str = "", arc_plan: str = "") -> str:
        parts = []
        if cliffhanger:
            parts.append(f"Continuing from: {cliffhanger[:QUERY_PART_CHARS]}")
        if arc_plan:
            parts.append(f"Current arc: {arc_plan[:QUERY_PART_CHARS]}")
        if project.protagonist:
            parts.append(f"Protagonist: {project.protagonist}")
        parts.append(f"Chapter: {chapter}")
        return "\n".join(parts)

    async def retrieve(self, project: Project, chapter: int, query: str) -> list[RetrievedChunk]:
        """Top-k chunks above the threshold, from chapters before the recent window, best first."""
        cfg = self.config
        if not cfg.retrieval_enabled or chapter < cfg.retrieval_min_chapter:
            return []
        # The recent window is already in the payload as chapter nodes
        cutoff = max(1, chapter - cfg.recent_chapters)
        candidates = [c for c in await self.store.list_chunks(project.id, before=cutoff) if c.embedding]
        if not candidates:
            return []

        [query_vector] = await self.client.embed([query], task_type="RETRIEVAL_QUERY")
        if not query_vector:
            logger.warning(f"[{project.id}] Query embedding failed for chapter {chapter}, skipping retrieval")
            return []
        candidates = [c for c in candidates if len(c.embedding) == len(query_vector)]
        if not candidates:
            return []

        scores = cosine_scores(query_vector, [c.embedding for c in candidates])
        hits = [
            RetrievedChunk(candidates[i], float(scores[i]))
            for i in np.argsort(-scores, kind="stable")
            if scores[i] >= cfg.retrieval_threshold
        ]
        return hits[:cfg.retrieval_top_k]

    def format(self, hits: list[RetrievedChunk], chapter: int) -> str:
        """Group hits by kind, best first within a kind, under `retrieval_chars`."""
        lines: list[str] = []
        total = 0
        kinds = list(KIND_ORDER) + sorted({h.chunk.kind for h in hits} - set(KIND_ORDER))
        for kind in kinds:
            for hit in sorted((h for h in hits if h.chunk.kind == kind), key=lambda h: -h.score):
                ago = chapter - hit.chunk.chapter_number
                label = KIND_LABELS.get(kind, kind)
                line = f"[Ch.{hit.chunk.chapter_number}, {ago} chapters ago] ({label}) {hit.chunk.content[:LINE_CHARS]}"
                if total + len(line) > self.config.retrieval_chars:
                    break
                lines.append(line)
                total += len(line)
        return "\n\n".join(lines)
