from __future__ import annotations

import datetime as dt

from conftest import make_project, make_session

from timetracker.models import AppState
from timetracker.stats import (
    daily_totals,
    find_total_mismatches,
    goal_progress,
    project_distribution,
    recompute_totals,
    summarize,
)


def _state() -> AppState:
    return AppState(
        projects=(
            make_project("p1", "Website", total_time_spent=150, goal_hours=1.0),
            make_project("p2", "Docs", total_time_spent=50),
            make_project("p3", "Idle"),
        ),
        completed_sessions=(
            make_session("s1", "p1", 100, start_time="2024-03-09T23:30:00+00:00"),
            make_session("s2", "p1", 50, start_time="2024-03-10T08:00:00+00:00"),
            make_session("s3", "p2", 50, start_time="2024-03-01T08:00:00+00:00"),
        ),
    )


def test_summarize_matches_dashboard_figures() -> None:
    summary = summarize(_state())

    assert summary.total_time == 200
    assert summary.session_count == 3
    assert summary.most_active_project.id == "p1"
    assert summary.average_session == 67


def test_summarize_empty_state() -> None:
    summary = summarize(AppState())

    assert summary.total_time == 0
    assert summary.most_active_project is None
    assert summary.average_session == 0


def test_daily_totals_buckets_by_start_day() -> None:
    totals = daily_totals(_state().completed_sessions, 3, dt.date(2024, 3, 10))

    assert totals == [
        (dt.date(2024, 3, 8), 0),
        (dt.date(2024, 3, 9), 100),
        (dt.date(2024, 3, 10), 50),
    ]
    only_docs = daily_totals(_state().completed_sessions, 10, dt.date(2024, 3, 10), project_id="p2")
    assert sum(total for _, total in only_docs) == 50


def test_project_distribution_and_goal_progress() -> None:
    state = _state()

    shares = project_distribution(state)

    assert [(p.id, share) for p, share in shares] == [("p1", 0.75), ("p2", 0.25)]
    assert goal_progress(state.project("p1")) == 150 / 3600
    assert goal_progress(state.project("p2")) is None


def test_total_mismatches_are_reported() -> None:
    state = _state()

    assert recompute_totals(state.projects, state.completed_sessions) == {
        "p1": 150,
        "p2": 50,
        "p3": 0,
    }
    assert find_total_mismatches(state) == {}

    drifted = AppState(projects=(make_project("p1", total_time_spent=10),))
    assert find_total_mismatches(drifted) == {"p1": (10, 0)}
