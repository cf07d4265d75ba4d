from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator

from .timer import TimerState
from .utils import duration_parts


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


def _serialize_duration(value: dt.timedelta) -> List[int]:
    seconds, nanos = duration_parts(value)
    return [seconds, nanos]


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    description: Optional[str]
    is_client: bool
    client_path: Optional[str]
    created_at: dt.datetime
    updated_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_client": self.is_client,
            "client_path": self.client_path,
            "created_at": _serialize_datetime(self.created_at),
            "updated_at": _serialize_datetime(self.updated_at),
        }


class ProjectCreateRequest(BaseModel):
    name: str
    description: Optional[str] = None
    client_path: Optional[str] = None


class ProjectUpdateRequest(BaseModel):
    description: Optional[str] = None
    client_path: Optional[str] = None


class ClientCandidate(BaseModel):
    name: str
    path: str


class ClientRegistrationRequest(BaseModel):
    candidates: List[ClientCandidate] = Field(default_factory=list)
    prefix: Optional[str] = None
    dry_run: bool = False


class ClientRegistrationResponse(BaseModel):
    created: List[ProjectResponse] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    planned: List[str] = Field(default_factory=list)


class TimeEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    project_id: str
    project_name: str
    task: Optional[str]
    start_time: dt.datetime
    end_time: dt.datetime
    duration: dt.timedelta
    tags: List[str]
    source: str
    commit_hash: Optional[str] = None
    classification: Optional[str] = None
    confidence: Optional[float] = None

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "task_description": self.task,
            "start_time": _serialize_datetime(self.start_time),
            "end_time": _serialize_datetime(self.end_time),
            "duration": _serialize_duration(self.duration),
            "tags": self.tags,
            "source": self.source,
            "commit_hash": self.commit_hash,
            "classification": self.classification,
            "confidence": self.confidence,
        }


class TimeEntryCreateRequest(BaseModel):
    """Manual entry. Any duration sent along is ignored; it is derived."""

    project_id: str
    start_time: dt.datetime
    end_time: dt.datetime
    task: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class TagRequest(BaseModel):
    tag: str


class TimerStartRequest(BaseModel):
    project_id: Optional[str] = None
    project: Optional[str] = None
    task: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_project(self) -> "TimerStartRequest":
        if not self.project_id and not self.project:
            raise ValueError("project_id or project is required")
        return self


class TimerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    project_id: str
    task: Optional[str]
    tags: List[str]
    start_time: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "task": self.task,
            "tags": self.tags,
            "start_time": _serialize_datetime(self.start_time),
        }


class TimerStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    state: TimerState
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    task: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    started_at: Optional[dt.datetime] = None
    elapsed: Optional[dt.timedelta] = None

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "task": self.task,
            "tags": self.tags,
            "started_at": _serialize_datetime(self.started_at) if self.started_at else None,
            "elapsed": _serialize_duration(self.elapsed) if self.elapsed is not None else None,
        }


class ReportEntry(BaseModel):
    id: str
    project_name: str
    task_description: Optional[str]
    start_time: dt.datetime
    end_time: dt.datetime
    duration: dt.timedelta
    tags: List[str] = Field(default_factory=list)
    source: str = "manual"

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "project_name": self.project_name,
            "task_description": self.task_description,
            "start_time": _serialize_datetime(self.start_time),
            "end_time": _serialize_datetime(self.end_time),
            "duration": _serialize_duration(self.duration),
            "tags": self.tags,
            "source": self.source,
        }


class ProjectSummary(BaseModel):
    project_name: str
    total_duration: dt.timedelta
    entry_count: int

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "project_name": self.project_name,
            "total_duration": _serialize_duration(self.total_duration),
            "entry_count": self.entry_count,
        }


class Report(BaseModel):
    kind: str
    range_start: Optional[dt.datetime] = None
    range_end: Optional[dt.datetime] = None
    total_duration: dt.timedelta = dt.timedelta(0)
    entries: List[ReportEntry] = Field(default_factory=list)
    project_summaries: List[ProjectSummary] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def subtotal(self, project_name: str) -> Optional[ProjectSummary]:
        for summary in self.project_summaries:
            if summary.project_name == project_name:
                return summary
        return None

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "range_start": _serialize_datetime(self.range_start) if self.range_start else None,
            "range_end": _serialize_datetime(self.range_end) if self.range_end else None,
            "empty": self.is_empty,
            "total_duration": _serialize_duration(self.total_duration),
            "entries": [entry._serialize() for entry in self.entries],
            "project_summaries": [summary._serialize() for summary in self.project_summaries],
        }


class ReportExportResponse(BaseModel):
    format: str
    path: str


class CommitEstimateResponse(BaseModel):
    hash: str
    summary: str
    timestamp: dt.datetime
    insertions: int
    deletions: int
    extensions: dict[str, int]
    keywords: List[str]
    estimated_duration: dt.timedelta
    classification: str
    confidence: float

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "summary": self.summary,
            "timestamp": _serialize_datetime(self.timestamp),
            "insertions": self.insertions,
            "deletions": self.deletions,
            "extensions": self.extensions,
            "keywords": self.keywords,
            "estimated_duration": _serialize_duration(self.estimated_duration),
            "classification": self.classification,
            "confidence": self.confidence,
        }


class GitAnalyzeRequest(BaseModel):
    repo_path: Path
    since: Optional[dt.datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)


class GitImportRequest(GitAnalyzeRequest):
    project_id: Optional[str] = None
    revision: Optional[str] = None


class GitImportResponse(BaseModel):
    created: List[TimeEntryResponse] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)


class StoreInfoResponse(BaseModel):
    last_modified: Optional[dt.datetime] = None


def estimate_response(pair: Tuple[Any, Any]) -> CommitEstimateResponse:
    analysis, result = pair
    commit = analysis.commit
    return CommitEstimateResponse(
        hash=commit.hash,
        summary=commit.summary,
        timestamp=commit.timestamp,
        insertions=commit.insertions,
        deletions=commit.deletions,
        extensions=dict(analysis.extensions),
        keywords=sorted(analysis.keywords),
        estimated_duration=result.duration,
        classification=result.classification.value,
        confidence=result.confidence,
    )
