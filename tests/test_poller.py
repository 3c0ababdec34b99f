from __future__ import annotations

from pathlib import Path

from conftest import FakeRemote, build_engine, close_engine, make_project

from timetracker.models import Session
from timetracker.poller import ActiveSessionPoller
from timetracker.scheduler import ManualScheduler


def _start_on(engine, session_id: str = "a1") -> Session:
    session = Session(id=session_id, project_id="p1", start_time="2024-01-03T08:00:00+00:00")
    engine.set_active_project("p1")
    return engine.start_timer(session)


def test_second_client_adopts_session_within_one_poll(tmp_path: Path, remote: FakeRemote) -> None:
    tab_a = build_engine(tmp_path, remote, name="a")
    tab_b = build_engine(tmp_path, remote, name="b")
    try:
        tab_a.bootstrap()
        tab_a.add_project(make_project("p1"))
        tab_b.bootstrap()
        _start_on(tab_a)
        scheduler = ManualScheduler()
        poller = ActiveSessionPoller(tab_b)
        poller.start(scheduler, 15)

        scheduler.advance(15)

        assert [s.id for s in tab_b.state.active_sessions] == ["a1"]
        assert tab_b.state.active_project == "p1"
        assert tab_b.status.reachable is True
        poller.stop()
        assert scheduler.pending == []
    finally:
        close_engine(tab_a)
        close_engine(tab_b)


def test_poll_never_duplicates_known_sessions(tmp_path: Path, remote: FakeRemote) -> None:
    tab_a = build_engine(tmp_path, remote, name="a")
    tab_b = build_engine(tmp_path, remote, name="b")
    try:
        tab_a.bootstrap()
        tab_a.add_project(make_project("p1"))
        tab_b.bootstrap()
        _start_on(tab_a)
        poller = ActiveSessionPoller(tab_b)

        assert len(poller.poll_once()) == 1
        assert poller.poll_once() == []
        assert len(tab_b.state.active_sessions) == 1

        tab_b.stop_timer("a1")
        assert poller.poll_once() == []
        assert tab_b.state.active_sessions == ()
    finally:
        close_engine(tab_a)
        close_engine(tab_b)


def test_poll_keeps_existing_active_project(tmp_path: Path, remote: FakeRemote) -> None:
    tab_a = build_engine(tmp_path, remote, name="a")
    tab_b = build_engine(tmp_path, remote, name="b")
    try:
        tab_a.bootstrap()
        tab_a.add_project(make_project("p1"))
        tab_a.add_project(make_project("p2", "Docs"))
        tab_b.bootstrap()
        tab_b.set_active_project("p2")
        _start_on(tab_a)

        ActiveSessionPoller(tab_b).poll_once()

        assert tab_b.state.active_project == "p2"
    finally:
        close_engine(tab_a)
        close_engine(tab_b)


def test_poll_offline_leaves_state_untouched(engine, remote: FakeRemote) -> None:
    engine.bootstrap()
    before = engine.state
    remote.offline = True

    assert ActiveSessionPoller(engine).poll_once() == []

    assert engine.state is before
    assert engine.status.reachable is False


def test_poll_rejection_is_logged(engine, remote: FakeRemote) -> None:
    engine.bootstrap()
    remote.reject = "bad request"

    assert ActiveSessionPoller(engine).poll_once() == []
    assert engine.status.reachable is True


def test_start_is_idempotent(engine) -> None:
    scheduler = ManualScheduler()
    poller = ActiveSessionPoller(engine)

    poller.start(scheduler, 15)
    poller.start(scheduler, 15)

    assert len(scheduler.pending) == 1
    assert poller.running


def test_adopted_session_for_unknown_project_leaves_selection_empty(
    tmp_path: Path, remote: FakeRemote
) -> None:
    tab_a = build_engine(tmp_path, remote, name="a")
    tab_b = build_engine(tmp_path, remote, name="b")
    try:
        tab_b.bootstrap()
        tab_a.bootstrap()
        tab_a.add_project(make_project("p1"))
        _start_on(tab_a)

        adopted = ActiveSessionPoller(tab_b).poll_once()

        assert [s.id for s in adopted] == ["a1"]
        assert tab_b.state.project("p1") is None
        assert tab_b.state.active_project is None
    finally:
        close_engine(tab_a)
        close_engine(tab_b)
