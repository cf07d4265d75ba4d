from __future__ import annotations

import datetime as dt
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import errors, git_import, reporting, store, timer
from .config import configure_logging, settings
from .database import get_db, init_db
from .schemas import (
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    CommitEstimateResponse,
    GitAnalyzeRequest,
    GitImportRequest,
    GitImportResponse,
    ProjectCreateRequest,
    ProjectResponse,
    ProjectUpdateRequest,
    Report,
    ReportExportResponse,
    StoreInfoResponse,
    TagRequest,
    TimeEntryCreateRequest,
    TimeEntryResponse,
    TimerResponse,
    TimerStartRequest,
    TimerStatusResponse,
    estimate_response,
)

ERROR_STATUS = (
    (errors.ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (errors.ConflictError, status.HTTP_409_CONFLICT),
    (errors.NotFoundError, status.HTTP_404_NOT_FOUND),
    (errors.PreconditionError, status.HTTP_412_PRECONDITION_FAILED),
    (errors.GitError, status.HTTP_502_BAD_GATEWAY),
)


def error_status(exc: errors.TimespanError) -> int:
    for kind, code in ERROR_STATUS:
        if isinstance(exc, kind):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


configure_logging(settings.log_level)
init_db()

app = FastAPI(title=settings.app_name)


@app.exception_handler(errors.TimespanError)
async def timespan_error_handler(request: Request, exc: errors.TimespanError) -> JSONResponse:
    body = {"detail": exc.public_message}
    if isinstance(exc, errors.AlreadyTrackingError):
        body["project_id"] = exc.project_id
        body["project_name"] = exc.project_name
    return JSONResponse(body, status_code=error_status(exc))


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/store", response_model=StoreInfoResponse)
def store_info(db: Session = Depends(get_db)) -> StoreInfoResponse:
    return StoreInfoResponse(last_modified=store.last_modified(db))


@app.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def project_create(payload: ProjectCreateRequest, db: Session = Depends(get_db)) -> ProjectResponse:
    return store.create_project(db, payload.name, payload.description, payload.client_path)


@app.get("/projects", response_model=List[ProjectResponse])
def project_list(clients_only: bool = False, db: Session = Depends(get_db)) -> List[ProjectResponse]:
    return store.list_projects(db, clients_only=clients_only)


@app.patch("/projects/{project_id}", response_model=ProjectResponse)
def project_update(
    project_id: str, payload: ProjectUpdateRequest, db: Session = Depends(get_db)
) -> ProjectResponse:
    changes = payload.model_dump(exclude_unset=True)
    return store.update_project(db, project_id, **changes)


@app.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def project_delete(project_id: str, db: Session = Depends(get_db)) -> None:
    store.delete_project(db, project_id)


@app.post("/projects/clients", response_model=ClientRegistrationResponse)
def project_register_clients(
    payload: ClientRegistrationRequest, db: Session = Depends(get_db)
) -> ClientRegistrationResponse:
    result = store.register_client_projects(
        db,
        [(candidate.name, candidate.path) for candidate in payload.candidates],
        prefix=payload.prefix,
        dry_run=payload.dry_run,
    )
    return ClientRegistrationResponse(
        created=[ProjectResponse.model_validate(project) for project in result.created],
        skipped=result.skipped,
        planned=result.planned,
    )


@app.post("/entries", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def entry_create(payload: TimeEntryCreateRequest, db: Session = Depends(get_db)) -> TimeEntryResponse:
    return store.create_time_entry(
        db,
        project_id=payload.project_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        task=payload.task,
        tags=payload.tags,
    )


@app.get("/entries", response_model=List[TimeEntryResponse])
def entry_list(
    project_id: Optional[str] = None,
    from_time: Optional[dt.datetime] = Query(default=None, alias="from"),
    to_time: Optional[dt.datetime] = Query(default=None, alias="to"),
    db: Session = Depends(get_db),
) -> List[TimeEntryResponse]:
    return store.list_time_entries(db, project_id=project_id, start=from_time, end=to_time)


@app.post("/entries/{entry_id}/tags", response_model=TimeEntryResponse)
def entry_add_tag(entry_id: str, payload: TagRequest, db: Session = Depends(get_db)) -> TimeEntryResponse:
    return store.add_tag(db, entry_id, payload.tag)


@app.delete("/entries/{entry_id}/tags/{tag}", response_model=TimeEntryResponse)
def entry_remove_tag(entry_id: str, tag: str, db: Session = Depends(get_db)) -> TimeEntryResponse:
    return store.remove_tag(db, entry_id, tag)


@app.post("/timer/start", response_model=TimerResponse, status_code=status.HTTP_201_CREATED)
def timer_start(payload: TimerStartRequest, db: Session = Depends(get_db)) -> TimerResponse:
    project_id = payload.project_id
    if project_id is None:
        active = store.get_timer(db)
        if active is None:
            project_id = store.require_project_by_name(db, payload.project).id
        else:
            # Report the running timer before complaining about the project.
            project_id = active.project_id
    return timer.start(db, project_id, payload.task, payload.tags)


@app.post("/timer/stop", response_model=TimeEntryResponse)
def timer_stop(db: Session = Depends(get_db)) -> TimeEntryResponse:
    return timer.stop(db)


@app.get("/timer", response_model=TimerStatusResponse)
def timer_status(db: Session = Depends(get_db)) -> TimerStatusResponse:
    return TimerStatusResponse.model_validate(timer.status(db))


@app.get("/reports/daily/{day}", response_model=Report)
def report_daily(day: dt.date, db: Session = Depends(get_db)) -> Report:
    return reporting.daily_report(db, day)


@app.get("/reports/weekly/{week_start}", response_model=Report)
def report_weekly(week_start: dt.date, db: Session = Depends(get_db)) -> Report:
    return reporting.weekly_report(db, week_start)


@app.get("/reports/project/{project_id}", response_model=Report)
def report_project(
    project_id: str,
    from_time: Optional[dt.datetime] = Query(default=None, alias="from"),
    to_time: Optional[dt.datetime] = Query(default=None, alias="to"),
    db: Session = Depends(get_db),
) -> Report:
    return reporting.filtered_report(db, project_id, from_time, to_time)


@app.post("/reports/daily/{day}/export", response_model=ReportExportResponse)
def report_daily_export(
    day: dt.date, export_format: str = Query(default="json", alias="format"), db: Session = Depends(get_db)
) -> ReportExportResponse:
    path = reporting.export_report(reporting.daily_report(db, day), export_format)
    return ReportExportResponse(format=export_format, path=str(path))


@app.post("/reports/weekly/{week_start}/export", response_model=ReportExportResponse)
def report_weekly_export(
    week_start: dt.date, export_format: str = Query(default="json", alias="format"), db: Session = Depends(get_db)
) -> ReportExportResponse:
    path = reporting.export_report(reporting.weekly_report(db, week_start), export_format)
    return ReportExportResponse(format=export_format, path=str(path))


@app.post("/git/analyze", response_model=List[CommitEstimateResponse])
def git_analyze(payload: GitAnalyzeRequest) -> List[CommitEstimateResponse]:
    pairs = git_import.preview(payload.repo_path, since=payload.since, limit=payload.limit)
    return [estimate_response(pair) for pair in pairs]


@app.post("/git/import", response_model=GitImportResponse)
def git_import_commits(payload: GitImportRequest, db: Session = Depends(get_db)) -> GitImportResponse:
    if payload.revision:
        entry = git_import.import_commit(db, payload.repo_path, payload.revision, payload.project_id)
        if entry is None:
            return GitImportResponse(skipped=[payload.revision])
        return GitImportResponse(created=[TimeEntryResponse.model_validate(entry)])
    project_id = payload.project_id
    if project_id is None:
        project = git_import.resolve_project_for_repository(db, payload.repo_path)
        if project is None:
            raise errors.UnknownProjectError(payload.repo_path.resolve().name)
        project_id = project.id
    result = git_import.import_commits(
        db, payload.repo_path, project_id, since=payload.since, limit=payload.limit
    )
    return GitImportResponse(
        created=[TimeEntryResponse.model_validate(entry) for entry in result.created],
        skipped=result.skipped,
    )
