from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from . import store
from .config import settings
from .errors import DuplicateCommitError, UnknownProjectError
from .estimation import CommitEstimate, WeightTable, estimate
from .git_analysis import CommitAnalysis, analyze, analyze_repository, origin_repository_name, read_commit
from .models import SOURCE_COMMIT, Project, TimeEntry

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    created: List[TimeEntry] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def default_weights() -> WeightTable:
    return WeightTable.from_settings(settings)


def preview(
    repo_path: Path | str,
    since: Optional[dt.datetime] = None,
    limit: Optional[int] = None,
    weights: Optional[WeightTable] = None,
) -> List[Tuple[CommitAnalysis, CommitEstimate]]:
    """Analyse and estimate without writing anything."""
    table = weights or default_weights()
    return [(analysis, estimate(analysis, table)) for analysis in analyze_repository(repo_path, since, limit)]


def resolve_project_for_repository(db: Session, repo_path: Path | str) -> Optional[Project]:
    path = Path(repo_path).resolve()
    for project in store.list_projects(db, clients_only=True):
        if project.client_path and Path(project.client_path).expanduser().resolve() == path:
            return project
    candidates = [path.name, f"{settings.client_project_prefix} {path.name}"]
    remote_name = origin_repository_name(path)
    if remote_name:
        candidates.append(remote_name)
    for name in candidates:
        project = store.get_project_by_name(db, name)
        if project is not None:
            return project
    return None


def _task_for(analysis: CommitAnalysis) -> Optional[str]:
    summary = analysis.commit.summary
    if not summary:
        return None
    return summary[: settings.max_description_length]


def record_estimate(
    db: Session,
    project_id: str,
    analysis: CommitAnalysis,
    result: CommitEstimate,
) -> TimeEntry:
    """Store an estimated commit as an entry that ends at the commit time."""
    end_time = analysis.commit.timestamp
    return store.create_time_entry(
        db,
        project_id=project_id,
        start_time=end_time - result.duration,
        end_time=end_time,
        task=_task_for(analysis),
        tags=["git", result.classification.value.lower()],
        source=SOURCE_COMMIT,
        commit_hash=analysis.commit.hash,
        classification=result.classification.value,
        confidence=result.confidence,
    )


def import_commits(
    db: Session,
    repo_path: Path | str,
    project_id: str,
    since: Optional[dt.datetime] = None,
    limit: Optional[int] = None,
    weights: Optional[WeightTable] = None,
) -> ImportResult:
    store.get_project(db, project_id)
    table = weights or default_weights()
    outcome = ImportResult()
    for analysis in analyze_repository(repo_path, since, limit):
        commit_hash = analysis.commit.hash
        if store.find_entry_by_commit(db, commit_hash) is not None:
            outcome.skipped.append(commit_hash)
            continue
        try:
            outcome.created.append(record_estimate(db, project_id, analysis, estimate(analysis, table)))
        except DuplicateCommitError:
            outcome.skipped.append(commit_hash)
    logger.info(
        "Imported %d commits from %s (%d already present)",
        len(outcome.created),
        repo_path,
        len(outcome.skipped),
    )
    return outcome


def import_commit(
    db: Session,
    repo_path: Path | str,
    revision: str,
    project_id: Optional[str] = None,
    weights: Optional[WeightTable] = None,
) -> Optional[TimeEntry]:
    """Import one commit, e.g. from a post-commit hook.

    Without ``project_id`` the project is resolved from the repository. Returns
    ``None`` when the commit was imported before.
    """
    if project_id is None:
        project = resolve_project_for_repository(db, repo_path)
        if project is None:
            raise UnknownProjectError(Path(repo_path).resolve().name)
        project_id = project.id
    else:
        store.get_project(db, project_id)
    analysis = analyze(read_commit(repo_path, revision))
    if store.find_entry_by_commit(db, analysis.commit.hash) is not None:
        return None
    try:
        entry = record_estimate(db, project_id, analysis, estimate(analysis, weights or default_weights()))
    except DuplicateCommitError:
        return None
    logger.info("Imported commit %s as %s", analysis.commit.hash[:12], entry.classification)
    return entry
