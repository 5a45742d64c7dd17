"""Per-genre heuristics, one record per genre behind a registry lookup."""

from loguru import logger
from pydantic import BaseModel, Field, model_validator

DEFAULT_GENRE = "fantasy"


class Range(BaseModel):
    low: float = Field(ge=0, le=100)
    high: float = Field(ge=0, le=100)

    @model_validator(mode="after")
    def check_order(self) -> "Range":
        if self.low > self.high:
            raise ValueError(f"range low {self.low} above high {self.high}")
        return self

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high

    def __str__(self) -> str:
        return f"{self.low:g}-{self.high:g}%"


class CompositionTargets(BaseModel):
    dialogue: Range
    description: Range
    inner: Range

    def axes(self) -> dict[str, Range]:
        return {"dialogue": self.dialogue, "description": self.description, "inner": self.inner}


def _targets(dialogue, description, inner=(10, 20)) -> CompositionTargets:
    return CompositionTargets(
        dialogue=Range(low=dialogue[0], high=dialogue[1]),
        description=Range(low=description[0], high=description[1]),
        inner=Range(low=inner[0], high=inner[1]),
    )


class GenreProfile(BaseModel):
    name: str
    label: str = ""
    composition: CompositionTargets = Field(
        default_factory=lambda: _targets((35, 50), (35, 50))
    )
    min_dialogue_segments: int = Field(default=3, ge=0)
    tone: list[str] = Field(default_factory=list)
    vocabulary: list[str] = Field(default_factory=list)
    conventions: list[str] = Field(default_factory=list)
    forbidden_tropes: list[str] = Field(default_factory=list)

    def prompt_block(self) -> str:
        lines = [f"Genre: {self.label or self.name}"]
        if self.tone:
            lines.append(f"Tone: {', '.join(self.tone)}")
        if self.vocabulary:
            lines.append(f"Preferred vocabulary: {', '.join(self.vocabulary)}")
        for c in self.conventions:
            lines.append(f"- {c}")
        if self.forbidden_tropes:
            lines.append(f"Avoid: {'; '.join(self.forbidden_tropes)}")
        c = self.composition
        lines.append(
            f"Composition: dialogue {c.dialogue}, description {c.description}, "
            f"inner monologue {c.inner}"
        )
        return "\n".join(lines)


GENRE_REGISTRY: dict[str, GenreProfile] = {}


def register_genre(profile: GenreProfile) -> GenreProfile:
    GENRE_REGISTRY[profile.name] = profile
    return profile


def get_genre(name: str | None) -> GenreProfile:
    """Look up a genre profile, falling back to the default one."""
    key = (name or DEFAULT_GENRE).strip().lower()
    profile = GENRE_REGISTRY.get(key)
    if profile is None:
        logger.warning(f"Unknown genre '{name}', using '{DEFAULT_GENRE}' profile")
        profile = GENRE_REGISTRY[DEFAULT_GENRE]
    return profile


register_genre(GenreProfile(
    name="fantasy",
    label="Epic fantasy",
    composition=_targets((30, 45), (30, 45), (15, 25)),
    tone=["wondrous", "perilous"],
    vocabulary=["realm", "oath", "sigil", "ward"],
    conventions=[
        "Magic has a visible cost",
        "Every chapter moves the quest forward",
    ],
    forbidden_tropes=["chosen one wins without effort", "sudden new power from nowhere"],
))

register_genre(GenreProfile(
    name="cultivation",
    label="Cultivation / xianxia",
    composition=_targets((35, 45), (40, 50)),
    tone=["ambitious", "ruthless", "awe-struck"],
    vocabulary=["qi", "meridian", "breakthrough", "sect", "realm"],
    conventions=[
        "Power progression is earned through hardship",
        "Face-slapping payoffs follow humiliation",
    ],
    forbidden_tropes=["breakthrough without preparation", "elders who never act"],
))

register_genre(GenreProfile(
    name="mythic",
    label="Mythic high fantasy",
    composition=_targets((30, 40), (45, 55)),
    tone=["grand", "ancient"],
    vocabulary=["bloodline", "beast", "inheritance", "continent"],
    conventions=["World-building reveals itself through conflict"],
    forbidden_tropes=["map-dump openings"],
))

register_genre(GenreProfile(
    name="urban",
    label="Urban drama",
    composition=_targets((45, 60), (25, 40)),
    tone=["brisk", "witty", "grounded"],
    vocabulary=["company", "deal", "family", "city"],
    conventions=["Social stakes escalate each chapter", "Dialogue drives most scenes"],
    forbidden_tropes=["villain monologues", "instant wealth without setup"],
))

register_genre(GenreProfile(
    name="scifi",
    label="Science fiction",
    composition=_targets((35, 50), (35, 50)),
    tone=["curious", "tense"],
    vocabulary=["fleet", "signal", "colony", "drive"],
    conventions=["Technology follows its own established rules"],
    forbidden_tropes=["technobabble fixes"],
))

register_genre(GenreProfile(
    name="historical",
    label="Historical adventure",
    composition=_targets((30, 45), (40, 55)),
    tone=["measured", "vivid"],
    conventions=["Period detail stays consistent"],
    forbidden_tropes=["modern idioms in period speech"],
))

register_genre(GenreProfile(
    name="romance",
    label="Romance",
    composition=_targets((45, 60), (25, 40)),
    tone=["warm", "yearning"],
    conventions=["Emotional beats land on-page", "Misunderstandings resolve through conversation"],
    forbidden_tropes=["love triangle reset every arc"],
))

register_genre(GenreProfile(
    name="mystery",
    label="Mystery",
    composition=_targets((40, 55), (30, 45)),
    tone=["wary", "precise"],
    conventions=["Clues are planted before they pay off"],
    forbidden_tropes=["culprit introduced in the final chapter"],
))
