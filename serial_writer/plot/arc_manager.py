"""Arc lifecycle, twists, threads and character milestones.

Arcs are fixed-size runs of chapters created lazily the first time a chapter
inside them is requested. Each arc carries a theme from a repeating cycle, a
tension curve peaking at its climax and two planned twists. After every
accepted chapter the manager applies the structured chapter analysis:
revealing twists, moving threads, appending character snapshots, and rolling
finished arcs and volumes into immutable summaries.
"""

import math
import random
import re
from dataclasses import dataclass, field

from loguru import logger

from ..config import PlotConfig
from ..models import (
    ArcStatus,
    ArcSummary,
    ChapterAnalysis,
    CharacterMilestone,
    CharacterState,
    PlotArc,
    PlotThread,
    Project,
    ThreadPriority,
    ThreadStatus,
    Twist,
    TwistStatus,
    VolumeSummary,
)
from ..storage import StoryStore
from ..utils.text import truncate_text

ARC_THEMES = [
    "foundation", "conflict", "growth", "betrayal",
    "redemption", "revelation", "war", "triumph",
]

THEME_GUIDANCE = {
    "foundation": "Establish the world, the protagonist's situation and the first goal.",
    "conflict": "Introduce a clear opposing force and force the protagonist to commit.",
    "growth": "Show the protagonist gaining skill or insight at a visible cost.",
    "betrayal": "Let trust break; an ally's loyalty is tested or lost.",
    "redemption": "Give a fallen or doubted character a chance to earn trust back.",
    "revelation": "Uncover a hidden truth that reframes earlier events.",
    "war": "Escalate to open confrontation between factions.",
    "triumph": "Pay off long-running setups with hard-won victories.",
    "finale": "Converge every major thread toward the ending.",
}

EARLY_TWISTS = ("revelation", "alliance", "power_up")
LATE_TWISTS = ("betrayal", "plot_reversal", "hidden_identity")

TWIST_DESCRIPTIONS = {
    "revelation": "A secret about the world or a character comes to light",
    "alliance": "An unexpected ally steps forward",
    "power_up": "The protagonist unlocks a new ability at a price",
    "betrayal": "Someone trusted turns against the protagonist",
    "plot_reversal": "The apparent victory turns out to be a trap",
    "hidden_identity": "A character's true identity is exposed",
}

TRACKED_ATTRIBUTES = ("power_level", "health", "alive")
STALE_THREAD_CHAPTERS = 10


@dataclass
class ChapterObjectives:
    chapter_number: int
    arc_number: int
    arc_theme: str
    arc_position: str
    tension_target: int
    pacing: str
    directives: list[str] = field(default_factory=list)
    threads_to_advance: list[PlotThread] = field(default_factory=list)
    upcoming_twists: list[Twist] = field(default_factory=list)
    is_climax: bool = False
    is_arc_end: bool = False
    milestone_due: bool = False
    finale_phase: str | None = None

    def render(self) -> str:
        lines = [
            f"Arc {self.arc_number} ({self.arc_theme}), {self.arc_position}.",
            f"Tension target: {self.tension_target}/100 ({self.pacing}).",
        ]
        if self.directives:
            lines.append("Directives:")
            lines.extend(f"- {d}" for d in self.directives)
        if self.threads_to_advance:
            lines.append("Threads to advance:")
            lines.extend(
                f"- [{t.priority.value}] {t.id}: {t.description}" for t in self.threads_to_advance
            )
        return "\n".join(lines)


@dataclass
class ChapterUpdate:
    revealed_twists: list[str] = field(default_factory=list)
    resolved_threads: list[str] = field(default_factory=list)
    advanced_threads: list[str] = field(default_factory=list)
    new_threads: list[str] = field(default_factory=list)
    snapshots: list[CharacterState] = field(default_factory=list)
    milestones: list[CharacterMilestone] = field(default_factory=list)
    arc_summaries: list[ArcSummary] = field(default_factory=list)
    volume_summaries: list[VolumeSummary] = field(default_factory=list)


def pacing_for(tension: int) -> str:
    if tension < 40:
        return "build-up"
    if tension < 70:
        return "rising action"
    if tension < 90:
        return "intense"
    return "climax"


PACING_DIRECTIVES = {
    "build-up": "Slow burn: ground the reader, seed questions, give characters room to breathe.",
    "rising action": "Raise the stakes each scene; end on an unresolved complication.",
    "intense": "Short scenes, hard choices, consequences that cannot be undone.",
    "climax": "Deliver the confrontation the arc has promised; pay off its setups.",
}


def slugify(text: str) -> str:
    slug = re.sub(r"[^\w]+", "-", (text or "").lower(), flags=re.UNICODE).strip("-")
    return slug[:48]


class PlotArcManager:
    def __init__(self, store: StoryStore, config: PlotConfig | None = None, max_threads: int = 5):
        self.store = store
        self.config = config or PlotConfig()
        self.max_threads = max_threads

    # ---- geometry ----

    def arc_number_for(self, chapter: int) -> int:
        return (chapter - 1) // self.config.chapters_per_arc + 1

    def arc_bounds(self, arc_number: int) -> tuple[int, int]:
        start = (arc_number - 1) * self.config.chapters_per_arc + 1
        return start, start + self.config.chapters_per_arc - 1

    def volume_number_for(self, chapter: int) -> int:
        return (chapter - 1) // self.config.chapters_per_volume + 1

    def volume_bounds(self, volume_number: int) -> tuple[int, int]:
        start = (volume_number - 1) * self.config.chapters_per_volume + 1
        return start, start + self.config.chapters_per_volume - 1

    def theme_for(self, project: Project, arc_number: int) -> str:
        _, end = self.arc_bounds(arc_number)
        if end >= project.target_chapters:
            return "finale"
        return ARC_THEMES[(arc_number - 1) % len(ARC_THEMES)]

    @staticmethod
    def tension_for(arc: PlotArc, chapter: int) -> int:
        """Rise 30 -> 90 over the first 70% of the arc, peak at the climax, ease to 50."""
        span = max(1, arc.end_chapter - arc.start_chapter)
        pos = (chapter - arc.start_chapter) / span
        if chapter == arc.climax_chapter:
            return 95
        if chapter > arc.climax_chapter:
            tail = max(1, arc.end_chapter - arc.climax_chapter)
            return round(95 - (chapter - arc.climax_chapter) / tail * 45)
        if pos <= 0.7:
            return round(30 + pos / 0.7 * 60)
        return 90

    # ---- arcs and twists ----

    async def ensure_arc(self, project: Project, chapter: int) -> PlotArc:
        """Return the arc holding `chapter`, creating and activating it if needed."""
        arc_number = self.arc_number_for(chapter)
        arc = await self.store.get_arc(project.id, arc_number)
        if arc is None:
            start, end = self.arc_bounds(arc_number)
            theme = self.theme_for(project, arc_number)
            arc = PlotArc(
                arc_number=arc_number,
                start_chapter=start,
                end_chapter=end,
                climax_chapter=start + math.floor((end - start + 1) * 0.75),
                theme=theme,
                brief=THEME_GUIDANCE[theme],
            )
            arc = arc.model_copy(update={"climax_chapter": min(arc.climax_chapter, end)})
            await self.store.save_arc(project.id, arc)
            await self.plan_twists(project, arc)
            logger.info(f"Planned arc {arc_number} ({theme}) for chapters {start}-{end}")
        if arc.status == ArcStatus.PLANNED and arc.contains(chapter):
            arc = arc.model_copy(update={"status": ArcStatus.ACTIVE})
            await self.store.save_arc(project.id, arc)
        return arc

    async def plan_twists(self, project: Project, arc: PlotArc) -> list[Twist]:
        rng = random.Random(f"{project.id}:{arc.arc_number}")
        plans = [
            (rng.choice((3, 4)), rng.choice(EARLY_TWISTS), 60),
            (rng.choice((7, 8)), rng.choice(LATE_TWISTS), 80),
        ]
        twists = []
        for i, (offset, twist_type, impact) in enumerate(plans, start=1):
            target = min(arc.start_chapter + offset, arc.end_chapter)
            twist = Twist(
                id=f"arc{arc.arc_number}-twist{i}",
                arc_number=arc.arc_number,
                target_chapter=target,
                twist_type=twist_type,
                description=TWIST_DESCRIPTIONS[twist_type],
                impact=impact,
                foreshadowing_chapters=[c for c in (target - 2, target - 1) if c >= arc.start_chapter],
            )
            await self.store.save_twist(project.id, twist)
            twists.append(twist)
        return twists

    async def upcoming_twists(self, project_id: str, chapter: int, window: int | None = None) -> list[Twist]:
        window = self.config.twist_window if window is None else window
        twists = await self.store.list_twists(project_id, start=chapter, end=chapter + window)
        return [t for t in twists if t.status == TwistStatus.PENDING]

    async def arc_summaries(self, project_id: str, before_arc: int, lookback: int = 2) -> list[ArcSummary]:
        if lookback <= 0:
            return []
        summaries = [s for s in await self.store.list_arc_summaries(project_id) if s.arc_number < before_arc]
        return summaries[-lookback:]

    # ---- objectives ----

    async def priority_threads(self, project_id: str, chapter: int, limit: int | None = None) -> list[PlotThread]:
        limit = self.max_threads if limit is None else limit
        threads = await self.store.list_threads(project_id)
        threads.sort(key=lambda t: (-t.priority.weight, t.last_mentioned_chapter, t.origin_chapter))
        return threads[:limit]

    def finale_directives(self, project: Project, chapter: int) -> tuple[str | None, list[str]]:
        left = project.target_chapters - chapter
        if left < 0:
            return "overrun", ["The story has passed its planned length: resolve what remains and conclude."]
        if left == 0:
            return "final", [
                "This is the final chapter: resolve the central conflict.",
                "Close every open thread and end with an epilogue beat, not a cliffhanger.",
            ]
        if left <= 5:
            return "closing", [
                f"{left} chapters remain: resolve secondary threads, introduce no new threads.",
            ]
        if left <= 20:
            return "converging", [
                f"{left} chapters remain: begin converging threads toward the finale; no new major threads.",
            ]
        return None, []

    async def objectives_for(self, project: Project, chapter: int) -> ChapterObjectives:
        """Derive what chapter `chapter` must accomplish from the arc template and open threads."""
        arc = await self.ensure_arc(project, chapter)
        tension = self.tension_for(arc, chapter)
        pacing = pacing_for(tension)
        directives = [PACING_DIRECTIVES[pacing], THEME_GUIDANCE.get(arc.theme, "")]

        upcoming = await self.upcoming_twists(project.id, chapter)
        for twist in upcoming:
            distance = twist.target_chapter - chapter
            if distance == 0:
                directives.append(f"Reveal the planned twist now: {twist.description} ({twist.twist_type}).")
            elif distance <= self.config.foreshadow_window:
                directives.append(
                    f"Foreshadow subtly: {twist.description.lower()} (due in {distance} chapters)."
                )

        is_climax = chapter == arc.climax_chapter
        if is_climax:
            directives.append("Arc climax: the decisive confrontation of this arc happens in this chapter.")
        is_arc_end = chapter == arc.end_chapter
        if is_arc_end:
            directives.append("Arc finale: settle this arc's main conflict and open the hook for the next arc.")

        cadence = self.config.milestone_cadence
        milestone_due = chapter % cadence == 0
        if milestone_due:
            if chapter % (cadence * 2) == 0:
                directives.append(f"Major milestone: {project.protagonist or 'the protagonist'} reaches a clear turning point in power or outlook.")
            else:
                directives.append(f"Milestone: show {project.protagonist or 'the protagonist'} changing in a concrete way.")

        threads = await self.priority_threads(project.id, chapter)
        for t in threads:
            if t.priority in (ThreadPriority.CRITICAL, ThreadPriority.MAIN) and \
                    chapter - max(t.last_mentioned_chapter, t.origin_chapter) > STALE_THREAD_CHAPTERS:
                directives.append(f"Thread '{t.id}' has been quiet too long; bring it back.")

        finale_phase, finale = self.finale_directives(project, chapter)
        directives.extend(finale)

        return ChapterObjectives(
            chapter_number=chapter,
            arc_number=arc.arc_number,
            arc_theme=arc.theme,
            arc_position=f"chapter {chapter - arc.start_chapter + 1} of {arc.end_chapter - arc.start_chapter + 1}",
            tension_target=tension,
            pacing=pacing,
            directives=[d for d in directives if d],
            threads_to_advance=threads,
            upcoming_twists=upcoming,
            is_climax=is_climax,
            is_arc_end=is_arc_end,
            milestone_due=milestone_due,
            finale_phase=finale_phase,
        )

    # ---- post-commit updates ----

    async def _apply_threads(self, project_id: str, chapter: int, analysis: ChapterAnalysis, update: ChapterUpdate) -> None:
        threads = {t.id: t for t in await self.store.list_threads(project_id, include_resolved=True)}

        for tid in analysis.advanced_threads:
            thread = threads.get(tid)
            if thread is None or not thread.is_open:
                logger.debug(f"Ignoring advance signal for unknown or closed thread '{tid}'")
                continue
            thread = thread.model_copy(update={"status": ThreadStatus.DEVELOPING, "last_mentioned_chapter": chapter})
            threads[tid] = thread
            await self.store.save_thread(project_id, thread)
            update.advanced_threads.append(tid)

        for tid in analysis.resolved_threads:
            thread = threads.get(tid)
            if thread is None or not thread.is_open:
                logger.debug(f"Ignoring resolve signal for unknown or closed thread '{tid}'")
                continue
            try:
                thread = thread.resolve(chapter)
            except ValueError as e:
                logger.warning(str(e))
                continue
            threads[tid] = thread
            await self.store.save_thread(project_id, thread)
            update.resolved_threads.append(tid)

        for new in analysis.new_threads:
            tid = slugify(new.id or new.description)
            if not tid or tid in threads:
                continue
            try:
                priority = ThreadPriority(new.priority)
            except ValueError:
                priority = ThreadPriority.SUB
            thread = PlotThread(
                id=tid,
                description=new.description,
                priority=priority,
                origin_chapter=chapter,
                last_mentioned_chapter=chapter,
                characters=list(new.characters),
            )
            threads[tid] = thread
            await self.store.save_thread(project_id, thread)
            update.new_threads.append(tid)

    async def _apply_characters(self, project: Project, chapter: int, analysis: ChapterAnalysis, update: ChapterUpdate) -> None:
        latest = await self.store.latest_character_states(project.id)
        for upd in analysis.character_updates:
            if not upd.name:
                continue
            prev = latest.get(upd.name)
            base = prev.model_dump() if prev else {"name": upd.name}
            changes = {
                k: v for k, v in (
                    ("power_level", upd.power_level),
                    ("health", upd.health),
                    ("emotional_state", upd.emotional_state),
                    ("alive", upd.alive),
                ) if v is not None
            }
            if upd.relationships:
                changes["relationships"] = {**base.get("relationships", {}), **upd.relationships}
            if upd.abilities:
                changes["abilities"] = list(dict.fromkeys([*base.get("abilities", []), *upd.abilities]))
            snapshot = CharacterState(**{**base, **changes, "chapter": chapter})
            if prev is not None and snapshot.model_dump(exclude={"chapter"}) == prev.model_dump(exclude={"chapter"}):
                continue
            await self.store.append_character_state(project.id, snapshot)
            latest[upd.name] = snapshot
            update.snapshots.append(snapshot)

            if prev is not None:
                changed = [a for a in TRACKED_ATTRIBUTES if getattr(prev, a) != getattr(snapshot, a)]
                if changed:
                    event = upd.change or "; ".join(
                        f"{a}: {getattr(prev, a)} -> {getattr(snapshot, a)}" for a in changed
                    )
                    milestone = CharacterMilestone(
                        name=upd.name, chapter=chapter, event=event,
                        change=", ".join(changed), major="alive" in changed,
                    )
                    await self.store.append_milestone(project.id, milestone)
                    update.milestones.append(milestone)

        cadence = self.config.milestone_cadence
        if chapter % cadence == 0 and project.protagonist:
            if not any(m.name == project.protagonist for m in update.milestones):
                event = analysis.key_events[0] if analysis.key_events else truncate_text(analysis.summary, 200)
                milestone = CharacterMilestone(
                    name=project.protagonist, chapter=chapter, event=event or f"Chapter {chapter}",
                    change="cadence", major=chapter % (cadence * 2) == 0,
                )
                await self.store.append_milestone(project.id, milestone)
                update.milestones.append(milestone)

    async def apply_chapter(self, project: Project, chapter: int, analysis: ChapterAnalysis) -> ChapterUpdate:
        """Apply an accepted chapter's analysis to the plot state.

        The StoryGraphNode for `chapter` must already be stored so the arc
        roll-up can see it.
        """
        update = ChapterUpdate()
        # Ranges left open by an earlier failed update
        await self.close_completed_ranges(project, chapter - 1, update)

        for twist in await self.store.list_twists(project.id, start=chapter, end=chapter):
            if twist.status == TwistStatus.PENDING:
                await self.store.save_twist(project.id, twist.model_copy(update={"status": TwistStatus.REVEALED}))
                update.revealed_twists.append(twist.id)

        await self._apply_threads(project.id, chapter, analysis, update)
        await self._apply_characters(project, chapter, analysis, update)

        await self.ensure_arc(project, chapter)
        await self.close_completed_ranges(project, chapter, update)

        logger.debug(
            f"Chapter {chapter} plot update: {len(update.revealed_twists)} twists revealed, "
            f"{len(update.resolved_threads)} threads resolved, {len(update.new_threads)} opened"
        )
        return update

    async def close_completed_ranges(self, project: Project, through: int, update: ChapterUpdate | None = None) -> None:
        """Roll up every arc and volume ending at or before `through` that has no summary yet.

        Summaries must tile committed history, so a range whose roll-up
        failed is closed on a later chapter instead of being skipped.
        """
        if through < 1:
            return
        update = update or ChapterUpdate()

        summarized = {s.arc_number for s in await self.store.list_arc_summaries(project.id)}
        for arc_number in range(1, self.arc_number_for(through) + 1):
            start, end = self.arc_bounds(arc_number)
            if end > through or arc_number in summarized:
                continue
            arc = await self.store.get_arc(project.id, arc_number) or await self.ensure_arc(project, start)
            update.arc_summaries.append(await self.close_arc(project, arc))

        volumes = {s.volume_number for s in await self.store.list_volume_summaries(project.id)}
        for volume_number in range(1, self.volume_number_for(through) + 1):
            _, end = self.volume_bounds(volume_number)
            if end > through or volume_number in volumes:
                continue
            update.volume_summaries.append(await self.close_volume(project, volume_number))

    async def _character_deltas(self, project_id: str, names: set[str], start: int, end: int) -> dict[str, str]:
        deltas = {}
        for name in sorted(names):
            history = await self.store.character_history(project_id, name)
            before = [s for s in history if s.chapter < start]
            inside = [s for s in history if start <= s.chapter <= end]
            if not inside:
                continue
            first = before[-1] if before else inside[0]
            last = inside[-1]
            if first is last:
                deltas[name] = f"introduced: {last.descriptor()}"
            else:
                deltas[name] = f"{first.descriptor()} -> {last.descriptor()}"
        return deltas

    async def close_arc(self, project: Project, arc: PlotArc) -> ArcSummary:
        nodes = await self.store.list_graph_nodes(project.id, arc.start_chapter, arc.end_chapter)
        milestones = await self.store.list_milestones(project.id, arc.start_chapter, arc.end_chapter)
        threads = await self.store.list_threads(project.id, include_resolved=True)
        names = {n for node in nodes for n in node.character_snapshot}

        summary_text = " ".join(f"Ch{n.chapter_number}: {n.summary}" for n in nodes if n.summary)
        key_events = [e for n in nodes for e in n.key_events[:1]]
        summary = ArcSummary(
            arc_number=arc.arc_number,
            start_chapter=arc.start_chapter,
            end_chapter=arc.end_chapter,
            theme=arc.theme,
            summary=truncate_text(summary_text, 1500),
            milestones=[f"Ch{m.chapter} {m.name}: {m.event}" for m in milestones][:20] + key_events[:10],
            resolved_threads=[
                t.id for t in threads
                if t.resolution_chapter is not None and arc.start_chapter <= t.resolution_chapter <= arc.end_chapter
            ],
            introduced_threads=[t.id for t in threads if arc.start_chapter <= t.origin_chapter <= arc.end_chapter],
            character_deltas=await self._character_deltas(project.id, names, arc.start_chapter, arc.end_chapter),
        )
        await self.store.insert_arc_summary(project.id, summary)
        await self.store.save_arc(project.id, arc.model_copy(update={"status": ArcStatus.COMPLETED}))
        logger.info(f"Closed arc {arc.arc_number} (chapters {arc.start_chapter}-{arc.end_chapter})")
        return summary

    async def close_volume(self, project: Project, volume_number: int) -> VolumeSummary:
        start, end = self.volume_bounds(volume_number)
        arcs = [s for s in await self.store.list_arc_summaries(project.id) if start <= s.start_chapter and s.end_chapter <= end]
        threads = await self.store.list_threads(project.id, include_resolved=True)
        nodes = await self.store.list_graph_nodes(project.id, start, end)
        names = {n for node in nodes for n in node.character_snapshot}

        if arcs:
            text = " ".join(f"Arc {a.arc_number} ({a.theme}): {a.summary}" for a in arcs)
        else:
            text = " ".join(f"Ch{n.chapter_number}: {n.summary}" for n in nodes if n.summary)
        summary = VolumeSummary(
            volume_number=volume_number,
            start_chapter=start,
            end_chapter=end,
            title=f"Volume {volume_number}",
            summary=truncate_text(text, 3000),
            milestones=[m for a in arcs for m in a.milestones][:30],
            resolved_threads=[
                t.id for t in threads
                if t.resolution_chapter is not None and start <= t.resolution_chapter <= end
            ],
            introduced_threads=[t.id for t in threads if start <= t.origin_chapter <= end],
            open_threads=[t.id for t in threads if t.is_open and t.origin_chapter <= end],
            character_deltas=await self._character_deltas(project.id, names, start, end),
            active_characters=sorted(names),
        )
        await self.store.insert_volume_summary(project.id, summary)
        logger.info(f"Closed volume {volume_number} (chapters {start}-{end})")
        return summary
