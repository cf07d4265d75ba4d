"""Durable record of projects, completed time entries and the running timer.

Every write commits on its own. Uniqueness of project names, the project
reference of entries and timers, and the single timer row are enforced by the
database, so the checks done here in Python only pick the error to report.
"""

from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .config import settings
from .errors import (
    AlreadyTrackingError,
    ConflictError,
    DuplicateCommitError,
    PreconditionError,
    ProjectExistsError,
    StorageError,
    TimeEntryNotFoundError,
    UnknownProjectError,
    ValidationError,
)
from .models import (
    SOURCE_COMMIT,
    SOURCE_MANUAL,
    TIMER_ROW_ID,
    ActiveTimer,
    Project,
    StoreMetadata,
    TimeEntry,
)
from .utils import ensure_utc, from_db_datetime, normalize_tags, normalize_text, now

logger = logging.getLogger(__name__)

LAST_MODIFIED_KEY = "last_modified"

UNSET: Any = object()

ENTRY_SOURCES = {SOURCE_MANUAL, SOURCE_COMMIT}


@dataclass
class ClientRegistration:
    created: List[Project] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    planned: List[str] = field(default_factory=list)


@contextmanager
def _write(db: Session, action: str) -> Iterator[None]:
    """Run a write, turning unexpected database failures into ``StorageError``."""
    try:
        yield
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Storage failure while trying to %s", action)
        raise StorageError() from exc
    except Exception:
        db.rollback()
        raise


@contextmanager
def _read(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Storage failure while trying to %s", action)
        raise StorageError() from exc


def _validate_name(name: Any) -> str:
    value = normalize_text(name)
    if not value:
        raise ValidationError("project name must not be empty")
    if len(value) > settings.max_name_length:
        raise ValidationError(f"project name must be at most {settings.max_name_length} characters")
    return value


def _validate_description(description: Any, label: str = "description") -> Optional[str]:
    value = normalize_text(description)
    if value and len(value) > settings.max_description_length:
        raise ValidationError(f"{label} must be at most {settings.max_description_length} characters")
    return value


def _validate_tags(tags: Iterable[Any]) -> List[str]:
    normalized = normalize_tags(tags or [])
    for tag in normalized:
        if len(tag) > settings.max_tag_length:
            raise ValidationError(f"tags must be at most {settings.max_tag_length} characters")
    return normalized


def _touch(db: Session, moment: Optional[dt.datetime] = None) -> None:
    stamp = (moment or now()).isoformat()
    record = db.get(StoreMetadata, LAST_MODIFIED_KEY)
    if record:
        record.value = stamp
    else:
        db.add(StoreMetadata(key=LAST_MODIFIED_KEY, value=stamp))


def last_modified(db: Session) -> Optional[dt.datetime]:
    """Time of the last successful write; diagnostics only."""
    with _read("read the last-modified marker"):
        record = db.get(StoreMetadata, LAST_MODIFIED_KEY)
    if record is None:
        return None
    return dt.datetime.fromisoformat(record.value)


# Projects


def get_project(db: Session, project_id: str) -> Project:
    with _read("load a project"):
        project = db.get(Project, project_id)
    if project is None:
        raise UnknownProjectError(project_id)
    return project


def get_project_by_name(db: Session, name: str) -> Optional[Project]:
    with _read("look up a project by name"):
        return db.query(Project).filter(Project.name == name).one_or_none()


def require_project_by_name(db: Session, name: str) -> Project:
    project = get_project_by_name(db, name)
    if project is None:
        raise UnknownProjectError(name)
    return project


def list_projects(db: Session, clients_only: bool = False) -> List[Project]:
    with _read("list projects"):
        query = db.query(Project)
        if clients_only:
            query = query.filter(Project.is_client.is_(True))
        return query.order_by(Project.name.asc()).all()


def create_project(
    db: Session,
    name: str,
    description: Optional[str] = None,
    client_path: Optional[str] = None,
) -> Project:
    clean_name = _validate_name(name)
    clean_description = _validate_description(description)
    clean_path = normalize_text(client_path)
    if get_project_by_name(db, clean_name) is not None:
        raise ProjectExistsError()
    project = Project(
        name=clean_name,
        description=clean_description,
        is_client=clean_path is not None,
        client_path=clean_path,
    )
    with _write(db, "create a project"):
        try:
            db.add(project)
            _touch(db)
            db.commit()
        except IntegrityError as exc:
            # Lost a race against another invocation creating the same name.
            db.rollback()
            raise ProjectExistsError() from exc
        db.refresh(project)
    logger.info("Created project %s (%s)", project.name, project.id)
    return project


def update_project(
    db: Session,
    project_id: str,
    description: Any = UNSET,
    client_path: Any = UNSET,
) -> Project:
    project = get_project(db, project_id)
    if description is not UNSET:
        project.description = _validate_description(description)
    if client_path is not UNSET:
        project.client_path = normalize_text(client_path)
        project.is_client = project.client_path is not None
    with _write(db, "update a project"):
        _touch(db)
        db.commit()
        db.refresh(project)
    return project


def count_time_entries(db: Session, project_id: str) -> int:
    with _read("count time entries"):
        return db.query(TimeEntry).filter(TimeEntry.project_id == project_id).count()


def delete_project(db: Session, project_id: str) -> None:
    project = get_project(db, project_id)
    name = project.name
    if count_time_entries(db, project_id) > 0:
        raise PreconditionError()
    timer = get_timer(db)
    if timer is not None and timer.project_id == project_id:
        raise PreconditionError("project is tracked by the running timer")
    with _write(db, "delete a project"):
        try:
            db.delete(project)
            _touch(db)
            db.commit()
        except IntegrityError as exc:
            # An entry referencing the project was written in the meantime.
            db.rollback()
            raise PreconditionError() from exc
    logger.info("Deleted project %s (%s)", name, project_id)


def register_client_projects(
    db: Session,
    candidates: Iterable[Tuple[str, str]],
    prefix: Optional[str] = None,
    dry_run: bool = False,
) -> ClientRegistration:
    """Create client projects for discovered ``(name, path)`` candidates.

    Names that already exist are skipped. With ``dry_run`` nothing is written
    and ``planned`` lists the names that would be created.
    """
    label = settings.client_project_prefix if prefix is None else prefix
    result = ClientRegistration()
    for raw_name, path in candidates:
        base = normalize_text(raw_name)
        if not base:
            continue
        name = f"{label} {base}".strip() if label else base
        if get_project_by_name(db, name) is not None:
            result.skipped.append(name)
            continue
        if dry_run:
            result.planned.append(name)
            continue
        try:
            result.created.append(create_project(db, name, client_path=str(path)))
        except ProjectExistsError:
            result.skipped.append(name)
    return result


# Time entries


def create_time_entry(
    db: Session,
    project_id: str,
    start_time: dt.datetime,
    end_time: dt.datetime,
    task: Optional[str] = None,
    tags: Sequence[str] = (),
    source: str = SOURCE_MANUAL,
    commit_hash: Optional[str] = None,
    classification: Optional[str] = None,
    confidence: Optional[float] = None,
) -> TimeEntry:
    """Persist a completed session. The stored duration is always end - start."""
    if source not in ENTRY_SOURCES:
        raise ValidationError(f"unknown entry source: {source}")
    start_utc = ensure_utc(start_time)
    end_utc = ensure_utc(end_time)
    if end_utc < start_utc:
        raise ValidationError("end time must not be before start time")
    get_project(db, project_id)
    entry = TimeEntry(
        project_id=project_id,
        task=_validate_description(task, "task description"),
        tags=_validate_tags(tags),
        source=source,
        commit_hash=commit_hash,
        classification=classification,
        confidence=confidence,
    )
    entry.apply_times(start_utc, end_utc)
    with _write(db, "create a time entry"):
        try:
            db.add(entry)
            _touch(db)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if commit_hash and find_entry_by_commit(db, commit_hash) is not None:
                raise DuplicateCommitError() from exc
            raise UnknownProjectError(project_id) from exc
        db.refresh(entry)
    return entry


def get_time_entry(db: Session, entry_id: str) -> TimeEntry:
    with _read("load a time entry"):
        entry = db.get(TimeEntry, entry_id)
    if entry is None:
        raise TimeEntryNotFoundError()
    return entry


def find_entry_by_commit(db: Session, commit_hash: str) -> Optional[TimeEntry]:
    with _read("look up a commit-derived entry"):
        return db.query(TimeEntry).filter(TimeEntry.commit_hash == commit_hash).one_or_none()


def list_time_entries(
    db: Session,
    project_id: Optional[str] = None,
    start: Optional[dt.datetime] = None,
    end: Optional[dt.datetime] = None,
) -> List[TimeEntry]:
    """Entries whose start falls in ``[start, end)``, oldest first.

    Ties on the start time are broken by project name, then entry id.
    """
    with _read("list time entries"):
        query = db.query(TimeEntry).join(Project).options(joinedload(TimeEntry.project))
        if project_id is not None:
            query = query.filter(TimeEntry.project_id == project_id)
        if start is not None:
            query = query.filter(TimeEntry.start_time >= ensure_utc(start))
        if end is not None:
            query = query.filter(TimeEntry.start_time < ensure_utc(end))
        return query.order_by(TimeEntry.start_time.asc(), Project.name.asc(), TimeEntry.id.asc()).all()


def add_tag(db: Session, entry_id: str, tag: str) -> TimeEntry:
    entry = get_time_entry(db, entry_id)
    new_tags = _validate_tags([tag])
    if not new_tags:
        raise ValidationError("tag must not be empty")
    if new_tags[0] in entry.tags:
        return entry
    with _write(db, "tag a time entry"):
        entry.tags = [*entry.tags, new_tags[0]]
        _touch(db)
        db.commit()
        db.refresh(entry)
    return entry


def remove_tag(db: Session, entry_id: str, tag: str) -> TimeEntry:
    entry = get_time_entry(db, entry_id)
    target = normalize_text(tag)
    if target not in entry.tags:
        return entry
    with _write(db, "untag a time entry"):
        entry.tags = [existing for existing in entry.tags if existing != target]
        _touch(db)
        db.commit()
        db.refresh(entry)
    return entry


# Timer row


def get_timer(db: Session) -> Optional[ActiveTimer]:
    with _read("load the running timer"):
        return (
            db.query(ActiveTimer)
            .populate_existing()
            .filter(ActiveTimer.id == TIMER_ROW_ID)
            .one_or_none()
        )


def insert_timer(
    db: Session,
    project_id: str,
    start_time: dt.datetime,
    task: Optional[str] = None,
    tags: Sequence[str] = (),
) -> ActiveTimer:
    """Write the timer row. A second row is rejected by the primary key."""
    timer = ActiveTimer(
        id=TIMER_ROW_ID,
        project_id=project_id,
        task=_validate_description(task, "task description"),
        tags=_validate_tags(tags),
        start_time=ensure_utc(start_time),
    )
    with _write(db, "start the timer"):
        try:
            db.add(timer)
            _touch(db)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            holder = get_timer(db)
            if holder is not None:
                raise AlreadyTrackingError(holder.project_id, holder.project.name, holder.task) from exc
            if db.get(Project, project_id) is None:
                raise UnknownProjectError(project_id) from exc
            # The conflicting timer was stopped before it could be read back.
            logger.warning("Timer row changed while starting a timer for project %s", project_id)
            raise ConflictError() from exc
        db.refresh(timer)
    return timer


def close_timer(db: Session, timer: ActiveTimer, end_time: dt.datetime) -> Optional[TimeEntry]:
    """Delete the timer row and record it as an entry in one transaction.

    Returns ``None`` when the row was already gone, which happens when another
    invocation stopped the same timer first.
    """
    start_utc = from_db_datetime(timer.start_time)
    end_utc = ensure_utc(end_time)
    if end_utc < start_utc:
        logger.warning(
            "Stop time %s is before the timer start %s; recording a zero-length entry",
            end_utc.isoformat(),
            start_utc.isoformat(),
        )
        end_utc = start_utc
    entry = TimeEntry(
        project_id=timer.project_id,
        task=timer.task,
        tags=list(timer.tags or []),
        source=SOURCE_MANUAL,
    )
    entry.apply_times(start_utc, end_utc)
    with _write(db, "stop the timer"):
        removed = (
            db.query(ActiveTimer)
            .filter(ActiveTimer.id == TIMER_ROW_ID, ActiveTimer.start_time == timer.start_time)
            .delete(synchronize_session="fetch")
        )
        if removed == 0:
            db.rollback()
            return None
        db.add(entry)
        _touch(db, end_utc)
        db.commit()
        db.refresh(entry)
    return entry
