from __future__ import annotations

import datetime as dt
from collections.abc import Iterable
from dataclasses import dataclass

from .models import AppState, Project, Session
from .utils import parse_iso8601


@dataclass(frozen=True)
class Summary:
    total_time: int
    session_count: int
    most_active_project: Project | None
    average_session: int


def summarize(state: AppState) -> Summary:
    total_time = sum(p.total_time_spent for p in state.projects)
    count = len(state.completed_sessions)
    most_active = None
    if state.projects:
        most_active = max(state.projects, key=lambda p: p.total_time_spent)
        if most_active.total_time_spent <= 0:
            most_active = None
    average = 0
    if count:
        average = round(sum(s.duration for s in state.completed_sessions) / count)
    return Summary(
        total_time=total_time,
        session_count=count,
        most_active_project=most_active,
        average_session=average,
    )


def last_days(days: int, today: dt.date | None = None) -> list[dt.date]:
    today = today or dt.datetime.now(dt.UTC).date()
    return [today - dt.timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def daily_totals(
    sessions: Iterable[Session],
    days: int = 7,
    today: dt.date | None = None,
    *,
    project_id: str | None = None,
) -> list[tuple[dt.date, int]]:
    """Seconds tracked per calendar day (UTC), oldest first, bucketed by start time."""
    dates = last_days(days, today)
    totals = dict.fromkeys(dates, 0)
    for session in sessions:
        if project_id is not None and session.project_id != project_id:
            continue
        started = parse_iso8601(session.start_time)
        if started is None:
            continue
        day = started.astimezone(dt.UTC).date()
        if day in totals:
            totals[day] += session.duration
    return [(day, totals[day]) for day in dates]


def project_distribution(state: AppState) -> list[tuple[Project, float]]:
    """Share of all tracked time per project, largest first. Idle projects are left out."""
    total = sum(p.total_time_spent for p in state.projects)
    if total <= 0:
        return []
    shares = [(p, p.total_time_spent / total) for p in state.projects if p.total_time_spent > 0]
    return sorted(shares, key=lambda item: item[1], reverse=True)


def goal_progress(project: Project) -> float | None:
    if not project.goal_hours:
        return None
    return project.total_time_spent / (project.goal_hours * 3600)


def recompute_totals(projects: Iterable[Project], sessions: Iterable[Session]) -> dict[str, int]:
    totals = {p.id: 0 for p in projects}
    for session in sessions:
        if session.is_active or session.project_id not in totals:
            continue
        totals[session.project_id] += session.duration
    return totals


def find_total_mismatches(state: AppState) -> dict[str, tuple[int, int]]:
    """Projects whose stored total disagrees with their completed sessions: id -> (stored, computed)."""
    computed = recompute_totals(state.projects, state.completed_sessions)
    return {
        p.id: (p.total_time_spent, computed[p.id])
        for p in state.projects
        if p.total_time_spent != computed[p.id]
    }
