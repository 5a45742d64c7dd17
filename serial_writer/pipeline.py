"""Chapter pipeline: Architect -> Writer -> quality gate -> Critic -> commit."""

import asyncio
import inspect
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from loguru import logger

from .agents import analyze_chapter, fallback_outline, plan_chapter, review_chapter, write_chapter
from .client import GenerationClient
from .config import AppConfig
from .errors import (
    InvalidOutlineError,
    ProjectBusyError,
    QualityRejection,
    RunCancelled,
    SerialWriterError,
)
from .genres import GenreProfile, get_genre
from .memory import AntiRepetitionTracker, ChapterRetriever, ContextAssembler, ContextPayload, RepetitionVerdict
from .models import (
    STATE_PROGRESS,
    AgentRunAttempt,
    ChapterAnalysis,
    ChapterOutline,
    ChapterRecord,
    CriticReport,
    Project,
    RunState,
    RunStatus,
    StoryGraphNode,
    TerminalStatus,
)
from .plot import PlotArcManager
from .quality import RefinementLoop, StyleAnalyzer
from .storage import StoryStore
from .utils.logger import run_context
from .utils.text import count_words, first_sentence, last_sentence

CommitHook = Callable[[ChapterRecord], Awaitable[None] | None]


class LeaseRegistry:
    """Single-writer lease per project within one event loop."""

    def __init__(self):
        self._held: set[str] = set()

    def is_held(self, project_id: str) -> bool:
        return project_id in self._held

    @asynccontextmanager
    async def hold(self, project_id: str):
        if project_id in self._held:
            raise ProjectBusyError(f"Project '{project_id}' already has a chapter run in progress")
        self._held.add(project_id)
        try:
            yield
        finally:
            self._held.discard(project_id)


@dataclass
class RunResult:
    status: TerminalStatus
    chapter: ChapterRecord | None = None
    error: SerialWriterError | None = None
    critic_report: CriticReport | None = None
    attempts: list[AgentRunAttempt] = field(default_factory=list)

    @property
    def error_kind(self) -> str | None:
        return self.error.kind if self.error else None

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error else None

    @property
    def ok(self) -> bool:
        return self.status == TerminalStatus.COMPLETED

    def unwrap(self) -> ChapterRecord:
        """Return the committed chapter or raise the error that ended the run."""
        if self.chapter is not None:
            return self.chapter
        if self.error is not None:
            raise self.error
        raise SerialWriterError(f"Run ended with status {self.status.value} and no chapter")


@dataclass
class _Run:
    project: Project
    chapter: int
    status: RunStatus
    cancel_event: asyncio.Event | None = None
    attempts: list[AgentRunAttempt] = field(default_factory=list)
    fallback_used: bool = False


class Pipeline:
    """Produces one chapter per call, end to end.

    A run holds the project lease, persists a RunStatus at every state
    transition and commits only a chapter that passed the Critic and the
    anti-repetition checks. Cancellation is honoured between phases.
    """

    def __init__(
        self,
        store: StoryStore,
        client: GenerationClient,
        config: AppConfig | None = None,
        on_committed: CommitHook | None = None,
        leases: LeaseRegistry | None = None,
    ):
        self.store = store
        self.client = client
        self.config = config or AppConfig()
        self.on_committed = on_committed
        self.leases = leases or LeaseRegistry()
        self.arc_manager = PlotArcManager(
            store, self.config.plot, max_threads=self.config.memory.max_threads_in_context
        )
        self.retriever = ChapterRetriever(store, client, self.config.memory)
        self._trackers: dict[str, AntiRepetitionTracker] = {}

    def tracker_for(self, language: str) -> AntiRepetitionTracker:
        tracker = self._trackers.get(language)
        if tracker is None:
            tracker = AntiRepetitionTracker(
                self.store,
                title_threshold=self.config.quality.title_similarity_threshold,
                text_threshold=self.config.quality.text_similarity_threshold,
                language=language,
            )
            self._trackers[language] = tracker
        return tracker

    # ---- status ----

    async def _save_status(self, status: RunStatus) -> None:
        status.updated_at = datetime.now(timezone.utc)
        try:
            await self.store.save_status(status)
        except SerialWriterError as e:
            logger.warning(f"Could not persist status for '{status.project_id}': {e}")

    async def _transition(self, run: _Run, state: RunState, step: str) -> None:
        status = run.status
        status.state = state
        status.progress = max(status.progress, STATE_PROGRESS.get(state, status.progress))
        status.step = step
        logger.info(f"[{run.project.id}] chapter {run.chapter}: {state.value} ({status.progress}%) {step}")
        await self._save_status(status)

    @staticmethod
    def _check_cancel(run: _Run) -> None:
        if run.cancel_event is not None and run.cancel_event.is_set():
            raise RunCancelled(f"Run for chapter {run.chapter} cancelled")

    # ---- entry point ----

    async def produce_next_chapter(self, project_id: str, cancel_event: asyncio.Event | None = None) -> RunResult:
        """Generate, validate and commit the project's next chapter.

        Raises ProjectBusyError immediately when another run holds the
        project. Every other failure is reported through the RunResult.
        """
        with run_context(project_id):
            async with self.leases.hold(project_id):
                return await self._run(project_id, cancel_event)

    async def produce_chapters(
        self, project_id: str, count: int, cancel_event: asyncio.Event | None = None
    ) -> list[RunResult]:
        """Run up to `count` chapters back to back, stopping at the first unsuccessful run."""
        results = []
        for _ in range(count):
            result = await self.produce_next_chapter(project_id, cancel_event)
            results.append(result)
            if not result.ok:
                break
        return results

    async def _run(self, project_id: str, cancel_event: asyncio.Event | None) -> RunResult:
        status = RunStatus(project_id=project_id)
        run: _Run | None = None
        try:
            project = await self._reconcile(await self.store.get_project(project_id))
            status.chapter_number = project.current_chapter + 1
            run = _Run(project=project, chapter=status.chapter_number, status=status, cancel_event=cancel_event)
            with run_context(project_id, run.chapter):
                record = await self._produce(run)
        except RunCancelled as e:
            logger.warning(f"[{project_id}] {e}")
            status.state = RunState.STOPPED
            status.status = TerminalStatus.STOPPED
            status.error_kind, status.error_message = e.kind, str(e)
            await self._save_status(status)
            return self._result(TerminalStatus.STOPPED, run, error=e)
        except SerialWriterError as e:
            logger.error(f"[{project_id}] chapter {status.chapter_number} failed: {e.kind}: {e}")
            await self._fail(status, e.kind, str(e))
            return self._result(TerminalStatus.FAILED, run, error=e)
        except Exception as e:
            await self._fail(status, type(e).__name__, str(e))
            raise

        return self._result(TerminalStatus.COMPLETED, run, chapter=record)

    async def _fail(self, status: RunStatus, kind: str, message: str) -> None:
        status.state = RunState.FAILED
        status.status = TerminalStatus.FAILED
        status.error_kind, status.error_message = kind, message
        await self._save_status(status)

    @staticmethod
    def _result(status: TerminalStatus, run: _Run | None, chapter=None, error=None) -> RunResult:
        attempts = run.attempts if run else []
        report = None
        if isinstance(error, QualityRejection) and error.report is not None:
            report = error.report
        elif attempts:
            report = next((a.critic_report for a in reversed(attempts) if a.critic_report), None)
        return RunResult(status=status, chapter=chapter, error=error, critic_report=report, attempts=attempts)

    async def _reconcile(self, project: Project) -> Project:
        latest = await self.store.latest_chapter_number(project.id)
        if latest > project.current_chapter:
            logger.warning(
                f"[{project.id}] counter at {project.current_chapter} but chapter {latest} is committed, reconciling"
            )
            project = project.model_copy(update={"current_chapter": latest})
            await self.store.save_project(project)
        return project

    # ---- phases ----

    async def _plan(
        self,
        run: _Run,
        context: ContextPayload,
        genre: GenreProfile,
        target: int,
        notes: list[str] | None = None,
    ) -> ChapterOutline:
        await self._transition(run, RunState.PLANNING, "Architect planning outline")
        try:
            return await plan_chapter(self.client, run.project, run.chapter, context, genre, target, notes)
        except InvalidOutlineError as e:
            if run.fallback_used:
                raise
            run.fallback_used = True
            logger.warning(f"[{run.project.id}] {e}; using fallback outline")
            return fallback_outline(run.project, run.chapter, context.objectives, target)

    async def _repetition(
        self, tracker: AntiRepetitionTracker, project_id: str, title: str, text: str
    ) -> dict[str, RepetitionVerdict]:
        return {
            "title": await tracker.check(project_id, "title", title),
            "opening": await tracker.check(project_id, "opening", first_sentence(text)),
            "cliffhanger": await tracker.check(project_id, "cliffhanger", last_sentence(text)),
        }

    async def _produce(self, run: _Run) -> ChapterRecord:
        project = run.project
        settings = project.settings
        quality = self.config.quality
        target = settings.target_word_count
        genre = get_genre(project.genre)
        tracker = self.tracker_for(project.language)
        assembler = ContextAssembler(
            self.store, self.arc_manager, tracker, self.config.memory, self.config.plot, self.retriever
        )
        refiner = RefinementLoop(
            self.client,
            quality,
            language=project.language,
            max_output_tokens=self.config.provider.max_output_tokens,
            model=settings.model,
        )
        analyzer = StyleAnalyzer(project.language)

        await self._transition(run, RunState.PLANNING, "Assembling context")
        self._check_cancel(run)
        context = await assembler.assemble(project, run.chapter)
        outline = await self._plan(run, context, genre, target)

        rewrite_notes: list[str] = []
        accepted: AgentRunAttempt | None = None
        report: CriticReport | None = None
        for number in range(1, settings.max_retries + 1):
            self._check_cancel(run)
            attempt = AgentRunAttempt(attempt=number, outline=outline)
            run.attempts.append(attempt)
            run.status.attempt = number

            await self._transition(run, RunState.DRAFTING, f"Writer draft {number}/{settings.max_retries}")
            draft = await write_chapter(
                self.client, project, outline, context, genre, rewrite_notes, quality.continuation_ratio
            )
            self._check_cancel(run)

            await self._transition(run, RunState.VALIDATING, "Quality gate and refinement")
            refined = await refiner.refine(draft, genre, target)
            attempt.draft = refined.text
            attempt.word_count = refined.report.word_count
            attempt.refinement_passes = refined.passes
            self._check_cancel(run)

            await self._transition(run, RunState.REVIEWING, "Critic review")
            style = analyzer.analyze(refined.text)
            report = await review_chapter(
                self.client, project, outline, refined.text, style, refined.report,
                settings.min_score, quality.min_word_ratio,
            )
            verdicts = await self._repetition(tracker, project.id, outline.title, refined.text)
            report.repetition_notes = [
                f"The {kind} repeats an earlier one: '{v.near_duplicate_of}'"
                for kind, v in verdicts.items() if not v.accepted
            ]
            attempt.critic_report = report

            if report.approved and not report.repetition_notes:
                attempt.decision = "accepted"
                accepted = attempt
                break

            attempt.decision = "rejected"
            logger.info(
                f"[{project.id}] attempt {number} rejected: score {report.overall_score:g}"
                + (f", {'; '.join(report.repetition_notes)}" if report.repetition_notes else "")
            )
            if report.rewrite_instructions:
                rewrite_notes.append(report.rewrite_instructions)
            rewrite_notes.extend(report.repetition_notes)
            if not verdicts["title"].accepted and number < settings.max_retries:
                self._check_cancel(run)
                outline = await self._plan(
                    run, context, genre, target,
                    notes=[f"Do not reuse or paraphrase the title '{outline.title}'. Pick a new title."],
                )

        if accepted is None:
            raise QualityRejection(
                f"Chapter {run.chapter} rejected after {settings.max_retries} attempts", report=report
            )
        self._check_cancel(run)
        return await self._commit(run, accepted, tracker)

    async def _bookkeeping(self, label: str, coro) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning(f"Post-commit step '{label}' failed: {type(e).__name__}: {e}")

    async def _commit(self, run: _Run, attempt: AgentRunAttempt, tracker: AntiRepetitionTracker) -> ChapterRecord:
        project = run.project
        outline = attempt.outline
        text = attempt.draft

        await self._transition(run, RunState.COMMITTING, "Analysing and committing")
        threads = await self.store.list_threads(project.id)
        states = await self.store.latest_character_states(project.id)
        analysis: ChapterAnalysis = await analyze_chapter(
            self.client, project, run.chapter, outline.title, text, threads, sorted(states)
        )

        record = ChapterRecord(
            project_id=project.id,
            chapter_number=run.chapter,
            title=outline.title,
            body=text,
            word_count=count_words(text),
            score=attempt.critic_report.overall_score if attempt.critic_report else 0,
        )
        await self.store.insert_chapter(record)
        logger.success(f"[{project.id}] committed chapter {run.chapter}: '{record.title}' ({record.word_count} words)")

        # Nothing below may undo the commit
        project = project.model_copy(update={"current_chapter": run.chapter})
        run.project = project
        await self._bookkeeping("project counter", self.store.save_project(project))

        opening, closing = first_sentence(text), last_sentence(text)
        node = StoryGraphNode(
            chapter_number=run.chapter,
            title=outline.title,
            summary=analysis.summary,
            key_events=analysis.key_events,
            character_snapshot={name: s.descriptor() for name, s in states.items()},
            open_threads=[t.id for t in threads if t.id not in analysis.resolved_threads],
            opening=opening,
            cliffhanger=analysis.cliffhanger or closing,
        )
        await self._bookkeeping("graph node", self.store.save_graph_node(project.id, node))
        await self._bookkeeping("plot state", self._apply_plot(project, run.chapter, analysis, node))

        characters = set(states) | {u.name for u in analysis.character_updates}
        if project.protagonist:
            characters.add(project.protagonist)
        await self._bookkeeping("memory index", self.retriever.index_chapter(
            project, run.chapter, outline.title, text, analysis.summary, sorted(characters)
        ))

        for kind, value in (("title", outline.title), ("opening", opening), ("cliffhanger", closing)):
            await self._bookkeeping(f"{kind} history", tracker.record(project.id, kind, value))

        if self.on_committed is not None:
            await self._bookkeeping("on_committed", self._notify(record))

        run.status.error_kind = run.status.error_message = None
        run.status.status = TerminalStatus.COMPLETED
        await self._transition(run, RunState.ACCEPTED, f"Chapter {run.chapter} committed")
        return record

    async def _apply_plot(self, project: Project, chapter: int, analysis: ChapterAnalysis, node: StoryGraphNode) -> None:
        update = await self.arc_manager.apply_chapter(project, chapter, analysis)
        if update.snapshots or update.new_threads or update.resolved_threads:
            snapshot = dict(node.character_snapshot)
            snapshot.update({s.name: s.descriptor() for s in update.snapshots})
            open_threads = [t for t in node.open_threads if t not in update.resolved_threads]
            open_threads.extend(t for t in update.new_threads if t not in open_threads)
            await self.store.save_graph_node(
                project.id,
                node.model_copy(update={"character_snapshot": snapshot, "open_threads": open_threads}),
            )

    async def _notify(self, record: ChapterRecord) -> None:
        result = self.on_committed(record)
        if inspect.isawaitable(result):
            await result
