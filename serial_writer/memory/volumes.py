"""Relevance-ranked selection of volume summaries for the context payload."""

from dataclasses import dataclass

from ..config import MemoryConfig
from ..models import VolumeSummary


@dataclass
class VolumeScore:
    volume: VolumeSummary
    score: float
    anchor: bool = False


def score_volume(
    volume: VolumeSummary,
    current_volume: int,
    active_threads: set[str],
    active_characters: set[str],
    config: MemoryConfig,
) -> float:
    """Score 0-100: thread overlap, character overlap, proximity, first-volume bonus."""
    score = 0.0
    if active_threads:
        threads = set(volume.introduced_threads) | set(volume.open_threads)
        score += len(threads & active_threads) / len(active_threads) * config.thread_weight
    if active_characters:
        characters = set(volume.active_characters) | set(volume.character_deltas)
        score += len(characters & active_characters) / len(active_characters) * config.character_weight
    distance = abs(current_volume - volume.volume_number)
    score += max(0.0, 20 - distance * config.proximity_decay) / 20 * config.proximity_weight
    if volume.volume_number == 1:
        score += config.first_volume_bonus
    return round(score, 2)


def select_volumes(
    volumes: list[VolumeSummary],
    chapter: int,
    chapters_per_volume: int,
    active_threads: set[str],
    active_characters: set[str],
    config: MemoryConfig,
) -> list[VolumeScore]:
    """Pick at most `max_volumes_in_context` summaries for writing `chapter`.

    The anchor volume is the summary of the volume holding `chapter` if one
    exists, otherwise the latest volume closed before it. It is always
    kept when `include_latest_volume` is set. Other volumes must clear the
    relevance threshold and are taken best-first.
    """
    cap = config.max_volumes_in_context
    eligible = [v for v in volumes if v.start_chapter <= chapter]
    if cap <= 0 or not eligible:
        return []

    current = (chapter - 1) // chapters_per_volume + 1
    anchor = next((v for v in eligible if v.volume_number == current), None)
    if anchor is None:
        anchor = max(eligible, key=lambda v: v.volume_number)

    selected: list[VolumeScore] = []
    if config.include_latest_volume:
        selected.append(VolumeScore(
            anchor,
            score_volume(anchor, current, active_threads, active_characters, config),
            anchor=True,
        ))

    threshold = config.relevance_threshold * 100
    candidates = [
        VolumeScore(v, score_volume(v, current, active_threads, active_characters, config))
        for v in eligible
        if not (config.include_latest_volume and v.volume_number == anchor.volume_number)
    ]
    candidates = [c for c in candidates if c.score >= threshold]
    candidates.sort(key=lambda c: (-c.score, -c.volume.volume_number))

    for c in candidates:
        if len(selected) >= cap:
            break
        selected.append(c)

    selected.sort(key=lambda c: c.volume.volume_number)
    return selected[:cap]
