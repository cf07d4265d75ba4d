from __future__ import annotations

import datetime as dt

import pytest

from conftest import at
from timespan import store, timer
from timespan.errors import (
    AlreadyTrackingError,
    ConflictError,
    NotTrackingError,
    PreconditionError,
    UnknownProjectError,
)
from timespan.timer import TimerState


def test_start_stop_records_entry(session, sample_day):
    project = store.create_project(session, "Alpha")
    timer.start(session, project.id, "task A", ["deep"], now=at(sample_day, 9))

    entry = timer.stop(session, now=at(sample_day, 10, 15))

    assert entry.project_name == "Alpha"
    assert entry.task == "task A"
    assert entry.tags == ["deep"]
    assert entry.duration == dt.timedelta(hours=1, minutes=15)
    assert timer.status(session).state is TimerState.IDLE
    assert len(store.list_time_entries(session)) == 1


def test_second_start_fails_and_keeps_first_timer(session, sample_day):
    alpha = store.create_project(session, "Alpha")
    beta = store.create_project(session, "Beta")
    timer.start(session, alpha.id, "task A", now=at(sample_day, 9))

    with pytest.raises(AlreadyTrackingError) as excinfo:
        timer.start(session, beta.id, now=at(sample_day, 9, 1))

    assert excinfo.value.project_name == "Alpha"
    current = timer.status(session, now=at(sample_day, 9, 5))
    assert current.project_name == "Alpha"
    assert current.task == "task A"


def test_running_timer_is_reported_before_unknown_project(session, sample_day):
    alpha = store.create_project(session, "Alpha")
    timer.start(session, alpha.id, now=at(sample_day, 9))
    with pytest.raises(AlreadyTrackingError):
        timer.start(session, "does-not-exist")


def test_start_with_unknown_project(session):
    with pytest.raises(UnknownProjectError):
        timer.start(session, "does-not-exist")
    assert not timer.status(session).running


def test_stop_without_timer(session):
    with pytest.raises(NotTrackingError):
        timer.stop(session)
    assert store.list_time_entries(session) == []


def test_status_recomputes_elapsed(session, sample_day):
    project = store.create_project(session, "Alpha")
    timer.start(session, project.id, now=at(sample_day, 9))

    first = timer.status(session, now=at(sample_day, 9, 10))
    second = timer.status(session, now=at(sample_day, 9, 40))

    assert first.running
    assert first.elapsed == dt.timedelta(minutes=10)
    assert second.elapsed == dt.timedelta(minutes=40)
    assert second.started_at == at(sample_day, 9)


def test_concurrent_start_from_second_session_fails(session_factory, sample_day):
    first = session_factory()
    second = session_factory()
    try:
        alpha = store.create_project(first, "Alpha")
        beta = store.create_project(first, "Beta")
        # The second invocation saw no timer and goes straight to the insert.
        store.insert_timer(first, alpha.id, at(sample_day, 9))
        with pytest.raises(AlreadyTrackingError) as excinfo:
            store.insert_timer(second, beta.id, at(sample_day, 9))
        assert excinfo.value.project_id == alpha.id
    finally:
        first.close()
        second.close()


def test_concurrent_stop_records_one_entry(session_factory, sample_day):
    first = session_factory()
    second = session_factory()
    try:
        project = store.create_project(first, "Alpha")
        timer.start(first, project.id, now=at(sample_day, 9))
        stale = store.get_timer(second)

        timer.stop(first, now=at(sample_day, 10))
        assert store.close_timer(second, stale, at(sample_day, 10, 5)) is None
        assert len(store.list_time_entries(second)) == 1
    finally:
        first.close()
        second.close()


def test_tracked_project_cannot_be_deleted(session, sample_day):
    project = store.create_project(session, "Alpha")
    timer.start(session, project.id, now=at(sample_day, 9))
    with pytest.raises(PreconditionError):
        store.delete_project(session, project.id)


def test_timer_survives_new_session(session_factory, sample_day):
    first = session_factory()
    project = store.create_project(first, "Alpha")
    timer.start(first, project.id, "task A", now=at(sample_day, 9))
    first.close()

    later = session_factory()
    try:
        current = timer.status(later, now=at(sample_day, 11))
        assert current.running
        assert current.elapsed == dt.timedelta(hours=2)
    finally:
        later.close()


def test_timer_insert_for_unknown_project(session, sample_day):
    with pytest.raises(UnknownProjectError):
        store.insert_timer(session, "does-not-exist", at(sample_day, 9))


def test_timer_insert_when_holder_vanished(session_factory, sample_day, monkeypatch):
    first = session_factory()
    second = session_factory()
    try:
        alpha = store.create_project(first, "Alpha")
        beta = store.create_project(first, "Beta")
        store.insert_timer(first, alpha.id, at(sample_day, 9))
        # The holder is stopped between the failed insert and the read-back.
        monkeypatch.setattr(store, "get_timer", lambda db: None)

        with pytest.raises(ConflictError) as excinfo:
            store.insert_timer(second, beta.id, at(sample_day, 9))
    finally:
        first.close()
        second.close()


def test_idle_status_is_not_shared(session):
    first = timer.status(session)
    first.tags.append("leaked")

    assert timer.status(session).tags == []
    assert first is not timer.status(session)


def test_stop_before_start_is_clamped_and_logged(session, sample_day, caplog):
    project = store.create_project(session, "Alpha")
    timer.start(session, project.id, now=at(sample_day, 9))

    with caplog.at_level("WARNING", logger="timespan.store"):
        entry = timer.stop(session, now=at(sample_day, 8, 55))

    assert entry.duration == dt.timedelta(0)
    assert "before the timer start" in caplog.text
