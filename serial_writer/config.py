from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class ProviderConfig(BaseModel):
    provider: Literal["gemini", "openai"] = Field(default="gemini")
    api_key: str = Field(default="")
    model: str = Field(default="gemini-2.5-flash")
    base_url: Optional[str] = Field(default=None)
    max_output_tokens: int = Field(default=8192, gt=0)
    embedding_model: str = Field(default="gemini-embedding-001")
    embedding_dimensions: int = Field(default=768, gt=0)


class RateLimitConfig(BaseModel):
    capacity: int = Field(default=2000, gt=0)
    permits_per_minute: float = Field(default=2000, gt=0)
    throttle_penalty: int = Field(default=10, ge=0)


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    timeout_seconds: float = Field(default=180.0, gt=0)
    embedding_batch_size: int = Field(default=100, gt=0)
    embedding_max_chars: int = Field(default=8000, gt=0)


class MemoryConfig(BaseModel):
    max_volumes_in_context: int = Field(default=2, ge=0)
    relevance_threshold: float = Field(default=0.3, ge=0, le=1)
    include_latest_volume: bool = Field(default=True)
    thread_weight: float = Field(default=40, ge=0)
    character_weight: float = Field(default=30, ge=0)
    proximity_weight: float = Field(default=20, ge=0)
    proximity_decay: float = Field(default=2, ge=0)
    first_volume_bonus: float = Field(default=10, ge=0)
    recent_chapters: int = Field(default=5, gt=0)
    min_recent_chapters: int = Field(default=2, gt=0)
    arc_summary_lookback: int = Field(default=2, ge=0)
    max_characters_in_context: int = Field(default=8, gt=0)
    max_threads_in_context: int = Field(default=5, gt=0)
    max_titles_in_context: int = Field(default=50, ge=0)
    max_openings_in_context: int = Field(default=10, ge=0)
    max_cliffhangers_in_context: int = Field(default=10, ge=0)
    essence_chars: int = Field(default=2000, gt=0)
    volume_chars: int = Field(default=3000, gt=0)
    arc_chars: int = Field(default=2500, gt=0)
    chapter_chars: int = Field(default=4000, gt=0)
    state_chars: int = Field(default=2500, gt=0)
    retrieval_enabled: bool = Field(default=True)
    retrieval_min_chapter: int = Field(default=6, ge=1)
    retrieval_top_k: int = Field(default=8, gt=0)
    retrieval_threshold: float = Field(default=0.65, ge=-1, le=1)
    retrieval_chars: int = Field(default=6000, gt=0)
    chunk_target_words: int = Field(default=400, gt=0)
    chunk_max_chars: int = Field(default=2000, gt=0)
    chunk_min_paragraph_chars: int = Field(default=50, ge=0)


class QualityConfig(BaseModel):
    min_word_ratio: float = Field(default=0.8, gt=0, le=1)
    continuation_ratio: float = Field(default=0.7, gt=0, le=1)
    max_repair_cycles: int = Field(default=1, ge=0)
    title_similarity_threshold: float = Field(default=0.7, gt=0, le=1)
    text_similarity_threshold: float = Field(default=0.8, gt=0, le=1)


class PlotConfig(BaseModel):
    chapters_per_arc: int = Field(default=20, gt=1)
    chapters_per_volume: int = Field(default=100, gt=1)
    milestone_cadence: int = Field(default=5, gt=0)
    twist_window: int = Field(default=5, gt=0)
    foreshadow_window: int = Field(default=3, ge=0)


class ProjectSettings(BaseModel):
    """Per-project knobs. Every field has a documented default.

    model: backend model id; empty means the provider default.
    temperature: Writer sampling temperature.
    target_word_count: words per chapter the pipeline aims for.
    min_score: lowest Critic score (1-10) that can be accepted.
    max_retries: Writer attempts per chapter before the run fails.
    """

    model: str = Field(default="")
    temperature: float = Field(default=0.8, ge=0, le=2)
    target_word_count: int = Field(default=2800, gt=0)
    min_score: float = Field(default=6, ge=0, le=10)
    max_retries: int = Field(default=3, gt=0)

    @field_validator("model")
    @classmethod
    def strip_model(cls, v: str) -> str:
        return v.strip()


class AppConfig(BaseModel):
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    plot: PlotConfig = Field(default_factory=PlotConfig)
    defaults: ProjectSettings = Field(default_factory=ProjectSettings)
    store_path: Path = Field(default=Path("data/story_state.json"))
    log_level: str = Field(default="INFO")
    log_file: Optional[Path] = Field(default=None)

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path):
        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)
