from __future__ import annotations

import datetime as dt
import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from . import store
from .errors import AlreadyTrackingError, NotTrackingError
from .models import ActiveTimer, TimeEntry
from .utils import ensure_utc, from_db_datetime, now as utc_now

logger = logging.getLogger(__name__)


class TimerState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class TimerStatus:
    state: TimerState
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    task: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    started_at: Optional[dt.datetime] = None
    elapsed: Optional[dt.timedelta] = None

    @property
    def running(self) -> bool:
        return self.state is TimerState.RUNNING


def _raise_already_tracking(timer: ActiveTimer) -> None:
    raise AlreadyTrackingError(timer.project_id, timer.project.name, timer.task)


def start(
    db: Session,
    project_id: str,
    task: Optional[str] = None,
    tags: Sequence[str] = (),
    now: Optional[dt.datetime] = None,
) -> ActiveTimer:
    """Idle -> Running. Fails without writing anything when a timer already runs."""
    active = store.get_timer(db)
    if active is not None:
        _raise_already_tracking(active)
    project = store.get_project(db, project_id)
    timer = store.insert_timer(
        db,
        project_id=project.id,
        start_time=ensure_utc(now) if now else utc_now(),
        task=task,
        tags=tags,
    )
    logger.info("Started timer for project %s", project.name)
    return timer


def stop(db: Session, now: Optional[dt.datetime] = None) -> TimeEntry:
    """Running -> Idle. The timer row becomes a time entry ending at ``now``."""
    timer = store.get_timer(db)
    if timer is None:
        raise NotTrackingError()
    end_time = ensure_utc(now) if now else utc_now()
    entry = store.close_timer(db, timer, end_time)
    if entry is None:
        raise NotTrackingError()
    logger.info("Stopped timer for project %s after %s", entry.project_name, entry.duration)
    return entry


def status(db: Session, now: Optional[dt.datetime] = None) -> TimerStatus:
    timer = store.get_timer(db)
    if timer is None:
        return TimerStatus(state=TimerState.IDLE)
    moment = ensure_utc(now) if now else utc_now()
    return TimerStatus(
        state=TimerState.RUNNING,
        project_id=timer.project_id,
        project_name=timer.project.name,
        task=timer.task,
        tags=list(timer.tags or []),
        started_at=from_db_datetime(timer.start_time),
        elapsed=timer.elapsed(moment),
    )
