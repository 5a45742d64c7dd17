"""Quality gate repair loop: expand, add dialogue, rebalance, polish."""

from dataclasses import dataclass, field

from loguru import logger

from ..client import GenerationClient, SamplingParams
from ..config import QualityConfig
from ..genres import GenreProfile
from ..utils.text import clean_content, count_words
from .composition import GateReport, evaluate
from .style_analyzer import StyleAnalyzer

REFINER_SYSTEM = """You are a senior fiction editor revising a chapter of a serialized novel.
You return the complete revised chapter as plain prose: no title, no headings, no notes,
no markdown. Keep every plot event, name and fact from the draft unless told otherwise.
Keep dialogue in double quotes."""

EXPAND_TEMPLATE = """## Task
The chapter below has {words} words but needs at least {min_words} (target {target}).
Expand it to roughly {target} words. Deepen existing scenes with sensory detail,
character reactions and short exchanges of dialogue. Do not add new plot events
and do not repeat passages.

## Chapter
{text}"""

DIALOGUE_TEMPLATE = """## Task
The chapter below has only {segments} lines of dialogue; it needs at least {min_segments}.
Convert summarized conversations and stated feelings into 2-3 real exchanges of
dialogue between the characters present. Keep the scene order and the ending.

## Chapter
{text}"""

REBALANCE_TEMPLATE = """## Task
Rebalance the chapter's composition. Current estimate: dialogue {dialogue:.0f}%,
description {description:.0f}%, inner monologue {inner:.0f}%.

## Targets
{targets}

## Problems to fix
{problems}

Shift material between dialogue, description and the viewpoint character's thoughts
until each share falls inside its target range. Keep the plot and length.

## Chapter
{text}"""

FLUENCY_TEMPLATE = """## Task
Polish this chapter for fluency. Vary sentence length, mixing short punchy lines with
longer flowing ones. Remove stock phrases, clichés and repeated words. Keep the
content, length and dialogue share the same.
{extra}
## Chapter
{text}"""


@dataclass
class RefinementResult:
    text: str
    report: GateReport
    passes: list[str] = field(default_factory=list)
    cycles: int = 0

    @property
    def passed(self) -> bool:
        return self.report.passed

    @property
    def violations(self) -> list[str]:
        return self.report.violations()


class RefinementLoop:
    """Runs the ordered gate checks and repairs a draft with targeted passes.

    The number of model calls is bounded: at most four passes in the first
    cycle plus two per extra repair cycle.
    """

    def __init__(
        self,
        client: GenerationClient,
        quality: QualityConfig | None = None,
        language: str = "en",
        temperature: float = 0.7,
        max_output_tokens: int = 8192,
        model: str = "",
    ):
        self.client = client
        self.quality = quality or QualityConfig()
        self.language = language
        self.params = SamplingParams(temperature=temperature, max_output_tokens=max_output_tokens, model=model)
        self.analyzer = StyleAnalyzer(language)

    def evaluate(self, text: str, profile: GenreProfile, target_words: int) -> GateReport:
        return evaluate(text, profile, target_words, self.language, self.quality.min_word_ratio)

    async def _pass(self, kind: str, prompt: str, current: str, require_growth: bool = False) -> str:
        result = await self.client.generate(REFINER_SYSTEM, prompt, self.params, label=f"refine:{kind}")
        revised = clean_content(result.text)
        before, after = count_words(current), count_words(revised)
        if require_growth and after <= before:
            logger.warning(f"{kind} pass did not grow the chapter ({before} -> {after} words), keeping draft")
            return current
        if after < before * 0.5:
            logger.warning(f"{kind} pass shrank the chapter ({before} -> {after} words), keeping draft")
            return current
        logger.debug(f"{kind} pass: {before} -> {after} words")
        return revised

    async def expand(self, text: str, report: GateReport) -> str:
        prompt = EXPAND_TEMPLATE.format(
            words=report.word_count, min_words=report.min_words, target=report.target_words, text=text
        )
        return await self._pass("expand", prompt, text, require_growth=True)

    async def add_dialogue(self, text: str, report: GateReport) -> str:
        prompt = DIALOGUE_TEMPLATE.format(
            segments=report.dialogue_segments, min_segments=report.min_dialogue_segments, text=text
        )
        return await self._pass("add_dialogue", prompt, text)

    async def rebalance(self, text: str, report: GateReport, profile: GenreProfile) -> str:
        targets = "\n".join(f"- {axis}: {rng}" for axis, rng in profile.composition.axes().items())
        problems = "\n".join(f"- {v}" for v in report.violations()) or "- keep the current balance"
        c = report.composition
        prompt = REBALANCE_TEMPLATE.format(
            dialogue=c.dialogue, description=c.description, inner=c.inner,
            targets=targets, problems=problems, text=text,
        )
        return await self._pass("rebalance", prompt, text)

    async def polish(self, text: str, profile: GenreProfile) -> str:
        extra = []
        check = self.analyzer.quick_check(text)
        if not check.ok:
            extra.append(f"Main weakness: {check.headline}.")
        if profile.forbidden_tropes:
            extra.append(f"Avoid: {'; '.join(profile.forbidden_tropes)}.")
        prompt = FLUENCY_TEMPLATE.format(extra="\n".join(extra) + ("\n" if extra else ""), text=text)
        return await self._pass("fluency", prompt, text)

    async def refine(self, draft: str, profile: GenreProfile, target_words: int) -> RefinementResult:
        """Repair a draft until it passes the gate or the cycle cap is reached.

        Args:
            draft: Writer output.
            profile: Genre profile carrying the composition targets.
            target_words: Chapter target word count.

        Returns:
            RefinementResult with the final text and the last gate report.
        """
        text = draft
        passes: list[str] = []

        report = self.evaluate(text, profile, target_words)
        if not report.word_ok:
            text = await self.expand(text, report)
            passes.append("expand")
            report = self.evaluate(text, profile, target_words)
        if not report.dialogue_ok:
            text = await self.add_dialogue(text, report)
            passes.append("add_dialogue")
            report = self.evaluate(text, profile, target_words)
        if not report.composition_ok:
            text = await self.rebalance(text, report, profile)
            passes.append("rebalance")
        text = await self.polish(text, profile)
        passes.append("fluency")
        report = self.evaluate(text, profile, target_words)

        cycles = 0
        while not report.passed and cycles < self.quality.max_repair_cycles:
            cycles += 1
            logger.info(f"Gate still failing after repair ({'; '.join(report.violations())}), cycle {cycles}")
            text = await self.rebalance(text, report, profile)
            text = await self.polish(text, profile)
            passes.extend(["rebalance", "fluency"])
            report = self.evaluate(text, profile, target_words)

        if not report.passed:
            logger.warning(f"Accepting draft with gate violations: {'; '.join(report.violations())}")
        return RefinementResult(text=text, report=report, passes=passes, cycles=cycles)
