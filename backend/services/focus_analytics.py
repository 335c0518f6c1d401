"""
Focus session analytics.

Pure aggregation over a user's stored focus sessions: when they focus best,
which tasks go well, what keeps distracting them, and how consistent they
are. ``FocusAnalyticsService`` loads the sessions; everything else works on
plain lists so it can be tested without a database.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.subscription import as_utc
from infrastructure.database.models.focus import FocusSession

logger = logging.getLogger(__name__)

# Platform reference values until they are aggregated from real data
PLATFORM_AVERAGE_QUALITY = 7.2
TOP_PERFORMERS_QUALITY = 9.1
MAX_QUALITY = 10
TOP_DISTRACTIONS = 10


@dataclass
class HeatmapCell:
    day: str
    hour: int
    focus_quality: float
    session_count: int


@dataclass
class TaskVelocity:
    task_id: str
    task_title: str
    sessions_completed: int
    avg_focus_quality: float
    total_focus_seconds: int
    completion_rate: float


@dataclass
class DistractionPattern:
    distraction: str
    count: int
    impact_on_quality: float
    most_common_time: str


@dataclass
class FocusStats:
    total_focus_seconds: int = 0
    sessions_completed: int = 0
    avg_quality: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0


@dataclass
class Benchmark:
    user_average: float
    top_performers: float
    all_users: float
    percentile: int


@dataclass
class InsightsSummary:
    avg_quality: float
    total_hours: float
    sessions_completed: int
    best_focus_time: str
    best_task: str
    top_distraction: str
    current_streak: int


@dataclass
class FocusInsights:
    summary: InsightsSummary
    stats: FocusStats
    benchmark: Benchmark
    heatmap: list[HeatmapCell] = field(default_factory=list)
    task_velocity: list[TaskVelocity] = field(default_factory=list)
    distractions: list[DistractionPattern] = field(default_factory=list)


def _completed(sessions: Iterable[FocusSession]) -> list[FocusSession]:
    return [s for s in sessions if s.is_completed]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def hourly_heatmap(sessions: Sequence[FocusSession]) -> list[HeatmapCell]:
    """Mean quality of completed sessions per (weekday, start hour)."""
    buckets: dict[tuple[str, int], list[int]] = defaultdict(list)
    for session in _completed(sessions):
        started = as_utc(session.started_at)
        buckets[(started.strftime("%A"), started.hour)].append(session.focus_quality)

    return [
        HeatmapCell(day=day, hour=hour, focus_quality=_mean(qualities), session_count=len(qualities))
        for (day, hour), qualities in buckets.items()
    ]


def task_velocity(sessions: Sequence[FocusSession]) -> list[TaskVelocity]:
    """Per-task focus outcomes, best average quality first."""
    by_task: dict[str, list[FocusSession]] = defaultdict(list)
    for session in sessions:
        by_task[session.task_id].append(session)

    velocities = []
    for task_id, task_sessions in by_task.items():
        completed = _completed(task_sessions)
        velocities.append(
            TaskVelocity(
                task_id=task_id,
                task_title=task_sessions[-1].task_title,
                sessions_completed=len(completed),
                avg_focus_quality=_mean([s.focus_quality for s in completed]),
                total_focus_seconds=sum(s.duration_seconds for s in completed),
                completion_rate=len(completed) / len(task_sessions) * 100,
            )
        )

    velocities.sort(key=lambda v: v.avg_focus_quality, reverse=True)
    return velocities


def distraction_patterns(sessions: Sequence[FocusSession]) -> list[DistractionPattern]:
    """Most frequent distractions with their quality impact (10 - quality) and usual hour."""
    impacts: dict[str, list[int]] = defaultdict(list)
    hours: dict[str, Counter] = defaultdict(Counter)

    for session in _completed(sessions):
        hour = as_utc(session.started_at).hour
        for raw in session.distractions or []:
            normalized = str(raw).strip().lower()
            if not normalized:
                continue
            impacts[normalized].append(MAX_QUALITY - session.focus_quality)
            hours[normalized][hour] += 1

    patterns = [
        DistractionPattern(
            distraction=name,
            count=len(values),
            impact_on_quality=_mean(values),
            most_common_time=f"{hours[name].most_common(1)[0][0]}:00",
        )
        for name, values in impacts.items()
    ]
    patterns.sort(key=lambda p: p.count, reverse=True)
    return patterns[:TOP_DISTRACTIONS]


def _session_days(sessions: Iterable[FocusSession]) -> set[date]:
    return {as_utc(s.started_at).date() for s in sessions if s.ended_at is not None}


def current_streak(sessions: Sequence[FocusSession], today: date) -> int:
    """Consecutive days with an ended session, counting back from today or yesterday."""
    days = _session_days(sessions)
    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def longest_streak(sessions: Sequence[FocusSession]) -> int:
    days = sorted(_session_days(sessions))
    longest = run = 0
    previous: Optional[date] = None
    for day in days:
        run = run + 1 if previous and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return longest


def focus_stats(sessions: Sequence[FocusSession], today: date) -> FocusStats:
    completed = _completed(sessions)
    return FocusStats(
        total_focus_seconds=sum(s.duration_seconds for s in completed),
        sessions_completed=len(completed),
        avg_quality=_mean([s.focus_quality for s in completed]),
        current_streak=current_streak(sessions, today),
        longest_streak=longest_streak(sessions),
    )


def benchmark(
    user_average: float,
    platform_average: float = PLATFORM_AVERAGE_QUALITY,
    top_performers: float = TOP_PERFORMERS_QUALITY,
) -> Benchmark:
    """Place the user's average quality on a piecewise-linear percentile scale."""
    if user_average >= top_performers:
        percentile = 95 + (user_average - top_performers) / (MAX_QUALITY - top_performers) * 5
    elif user_average >= platform_average:
        percentile = 50 + (user_average - platform_average) / (top_performers - platform_average) * 45
    else:
        percentile = user_average / platform_average * 50

    return Benchmark(
        user_average=user_average,
        top_performers=top_performers,
        all_users=platform_average,
        percentile=round(percentile),
    )


def build_insights(sessions: Sequence[FocusSession], now: Optional[datetime] = None) -> FocusInsights:
    """Compute the full insights bundle for one user's sessions."""
    now = now or datetime.now(timezone.utc)
    today = as_utc(now).date()

    heatmap = hourly_heatmap(sessions)
    velocity = task_velocity(sessions)
    distractions = distraction_patterns(sessions)
    stats = focus_stats(sessions, today)

    best = max(heatmap, key=lambda cell: cell.focus_quality, default=None)
    summary = InsightsSummary(
        avg_quality=round(stats.avg_quality, 1),
        total_hours=round(stats.total_focus_seconds / 3600, 1),
        sessions_completed=stats.sessions_completed,
        best_focus_time=f"{best.day}s at {best.hour}:00" if best else "Not enough data",
        best_task=velocity[0].task_title if velocity else "None",
        top_distraction=distractions[0].distraction if distractions else "None",
        current_streak=stats.current_streak,
    )

    return FocusInsights(
        summary=summary,
        stats=stats,
        benchmark=benchmark(stats.avg_quality),
        heatmap=heatmap,
        task_velocity=velocity,
        distractions=distractions,
    )


class FocusAnalyticsService:
    """Loads a user's focus sessions and computes insights over them."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_sessions(
        self,
        user_id: str,
        days: int = 30,
        now: Optional[datetime] = None,
    ) -> list[FocusSession]:
        """Sessions started within the last ``days`` days, newest first."""
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=days)
        result = await self.db.execute(
            select(FocusSession)
            .where(FocusSession.user_id == user_id, FocusSession.started_at >= since)
            .order_by(FocusSession.started_at.desc())
        )
        return list(result.scalars().all())

    async def get_insights(
        self,
        user_id: str,
        days: int = 30,
        now: Optional[datetime] = None,
    ) -> FocusInsights:
        sessions = await self.list_sessions(user_id, days=days, now=now)
        logger.debug("Computing focus insights for user %s over %d sessions", user_id, len(sessions))
        return build_insights(sessions, now=now)
