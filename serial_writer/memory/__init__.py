from .context import ContextAssembler, ContextPayload
from .repetition import (
    AntiRepetitionTracker,
    NegativeConstraints,
    RepetitionVerdict,
    normalize_title,
    title_similarity,
)
from .retrieval import ChapterRetriever, RetrievedChunk, chunk_chapter, detect_kind
from .volumes import VolumeScore, score_volume, select_volumes

__all__ = [
    "ContextAssembler",
    "ContextPayload",
    "AntiRepetitionTracker",
    "NegativeConstraints",
    "RepetitionVerdict",
    "normalize_title",
    "title_similarity",
    "ChapterRetriever",
    "RetrievedChunk",
    "chunk_chapter",
    "detect_kind",
    "VolumeScore",
    "score_volume",
    "select_volumes",
]
