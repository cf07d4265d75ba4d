"""TimeSpan command line."""

from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from . import git_import, reporting, store, timer
from .config import configure_logging, settings
from .errors import AlreadyTrackingError, TimespanError
from .utils import LOCAL_TZ, format_duration, now

logger = logging.getLogger(__name__)


def _parse_datetime(value: str) -> dt.datetime:
    try:
        return dt.datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value}") from exc


def _parse_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 date: {value}") from exc


def cmd_serve(args: argparse.Namespace, db: Session) -> None:
    import uvicorn

    logger.info("Serving %s on %s:%s", settings.app_name, settings.host, settings.port)
    uvicorn.run("timespan.main:app", host=settings.host, port=settings.port, reload=False)


def cmd_project_create(args: argparse.Namespace, db: Session) -> None:
    project = store.create_project(db, args.name, args.description, args.path)
    print(f"Created project '{project.name}'")


def cmd_project_list(args: argparse.Namespace, db: Session) -> None:
    projects = store.list_projects(db, clients_only=args.clients)
    if not projects:
        print("No projects")
        return
    for project in projects:
        line = project.name
        if project.description:
            line += f" - {project.description}"
        if project.client_path:
            line += f" [{project.client_path}]"
        print(line)


def cmd_project_update(args: argparse.Namespace, db: Session) -> None:
    project = store.require_project_by_name(db, args.name)
    changes = {}
    if args.description is not None:
        changes["description"] = args.description
    if args.path is not None:
        changes["client_path"] = args.path
    store.update_project(db, project.id, **changes)
    print(f"Updated project '{project.name}'")


def cmd_project_delete(args: argparse.Namespace, db: Session) -> None:
    project = store.require_project_by_name(db, args.name)
    store.delete_project(db, project.id)
    print(f"Deleted project '{args.name}'")


def cmd_start(args: argparse.Namespace, db: Session) -> None:
    active = store.get_timer(db)
    if active is not None:
        raise AlreadyTrackingError(active.project_id, active.project.name, active.task)
    project = store.require_project_by_name(db, args.project)
    timer.start(db, project.id, args.task, args.tag or [])
    print(f"Started tracking time for '{project.name}'")


def cmd_stop(args: argparse.Namespace, db: Session) -> None:
    entry = timer.stop(db)
    print(f"Stopped tracking time for '{entry.project_name}' ({format_duration(entry.duration)})")


def cmd_status(args: argparse.Namespace, db: Session) -> None:
    current = timer.status(db)
    if not current.running:
        print("No active timer")
        return
    task = f" - {current.task}" if current.task else ""
    print(f"{current.project_name} ({format_duration(current.elapsed)}){task}")


def _print_report(report, args: argparse.Namespace) -> None:
    if args.xlsx:
        reporting.export_report(report, "xlsx", Path(args.xlsx))
    if args.pdf:
        reporting.export_report(report, "pdf", Path(args.pdf))
    if args.json:
        print(reporting.export_json(report))
        return
    if report.is_empty:
        print("No entries")
        return
    for entry in report.entries:
        task = f" - {entry.task_description}" if entry.task_description else ""
        print(f"{entry.start_time:%Y-%m-%d %H:%M} {entry.project_name} ({format_duration(entry.duration)}){task}")
    print()
    for summary in report.project_summaries:
        print(f"{summary.project_name}: {format_duration(summary.total_duration)} ({summary.entry_count} entries)")
    print(f"Total: {format_duration(report.total_duration)}")


def cmd_report_daily(args: argparse.Namespace, db: Session) -> None:
    day = args.date or now().astimezone(LOCAL_TZ).date()
    _print_report(reporting.daily_report(db, day), args)


def cmd_report_weekly(args: argparse.Namespace, db: Session) -> None:
    week_start = args.week_start or reporting.current_week_start()
    _print_report(reporting.weekly_report(db, week_start), args)


def cmd_report_project(args: argparse.Namespace, db: Session) -> None:
    project = store.require_project_by_name(db, args.name)
    _print_report(reporting.filtered_report(db, project.id), args)


def _project_for_repo(db: Session, args: argparse.Namespace) -> Optional[str]:
    if args.project:
        return store.require_project_by_name(db, args.project).id
    return None


def cmd_git_analyze(args: argparse.Namespace, db: Session) -> None:
    pairs = git_import.preview(args.repo, since=args.since, limit=args.limit)
    if args.json:
        from .schemas import estimate_response

        print(json.dumps([estimate_response(pair).model_dump(mode="json") for pair in pairs], indent=2))
        return
    for analysis, result in pairs:
        print(
            f"{analysis.commit.hash[:8]} {result.classification.value:<13} "
            f"{format_duration(result.duration):>7} conf={result.confidence:.2f} {analysis.commit.summary}"
        )


def cmd_git_import(args: argparse.Namespace, db: Session) -> None:
    project_id = _project_for_repo(db, args)
    if args.commit:
        entry = git_import.import_commit(db, args.repo, args.commit, project_id)
        if entry is None:
            print(f"Commit {args.commit} already imported")
        else:
            print(f"Imported commit {args.commit} ({format_duration(entry.duration)})")
        return
    if project_id is None:
        project = git_import.resolve_project_for_repository(db, args.repo)
        if project is None:
            project = store.require_project_by_name(db, Path(args.repo).resolve().name)
        project_id = project.id
    result = git_import.import_commits(db, args.repo, project_id, since=args.since, limit=args.limit)
    print(f"Imported {len(result.created)} commits, skipped {len(result.skipped)}")


def _add_report_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Print the JSON export")
    parser.add_argument("--xlsx", help="Also write an xlsx file")
    parser.add_argument("--pdf", help="Also write a pdf file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timespan", description="Local time tracking")
    parser.add_argument("--log-level", default=settings.log_level)
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.set_defaults(func=cmd_serve)

    project = sub.add_parser("project", help="Manage projects")
    project_sub = project.add_subparsers(dest="project_command", required=True)
    create = project_sub.add_parser("create")
    create.add_argument("name")
    create.add_argument("-d", "--description")
    create.add_argument("--path", help="Client directory")
    create.set_defaults(func=cmd_project_create)
    listing = project_sub.add_parser("list")
    listing.add_argument("--clients", action="store_true")
    listing.set_defaults(func=cmd_project_list)
    update = project_sub.add_parser("update")
    update.add_argument("name")
    update.add_argument("-d", "--description")
    update.add_argument("--path")
    update.set_defaults(func=cmd_project_update)
    delete = project_sub.add_parser("delete")
    delete.add_argument("name")
    delete.set_defaults(func=cmd_project_delete)

    start = sub.add_parser("start", help="Start the timer")
    start.add_argument("project")
    start.add_argument("-t", "--task")
    start.add_argument("--tag", action="append")
    start.set_defaults(func=cmd_start)
    sub.add_parser("stop", help="Stop the timer").set_defaults(func=cmd_stop)
    sub.add_parser("status", help="Show the timer").set_defaults(func=cmd_status)

    report = sub.add_parser("report", help="Reports")
    report_sub = report.add_subparsers(dest="report_command", required=True)
    daily = report_sub.add_parser("daily")
    daily.add_argument("--date", type=_parse_date)
    _add_report_flags(daily)
    daily.set_defaults(func=cmd_report_daily)
    weekly = report_sub.add_parser("weekly")
    weekly.add_argument("--week-start", type=_parse_date)
    _add_report_flags(weekly)
    weekly.set_defaults(func=cmd_report_weekly)
    by_project = report_sub.add_parser("project")
    by_project.add_argument("name")
    _add_report_flags(by_project)
    by_project.set_defaults(func=cmd_report_project)

    git = sub.add_parser("git", help="Estimate time from commit history")
    git_sub = git.add_subparsers(dest="git_command", required=True)
    analyze = git_sub.add_parser("analyze")
    import_ = git_sub.add_parser("import")
    for command in (analyze, import_):
        command.add_argument("--repo", default=".")
        command.add_argument("--since", type=_parse_datetime)
        command.add_argument("--limit", type=int)
    analyze.add_argument("--json", action="store_true")
    analyze.set_defaults(func=cmd_git_analyze)
    import_.add_argument("--project")
    import_.add_argument("--commit", help="Import a single commit (post-commit hook)")
    import_.set_defaults(func=cmd_git_import)
    return parser


def main(argv: Optional[Sequence[str]] = None, session_factory: Optional[Callable[[], Session]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level.upper())
    try:
        if session_factory is None:
            from .database import SessionLocal, init_db

            init_db()
            session_factory = SessionLocal
        db = session_factory()
        try:
            args.func(args, db)
        finally:
            db.close()
    except AlreadyTrackingError as exc:
        print(f"Error: {exc.public_message} ('{exc.project_name}')", file=sys.stderr)
        return exc.exit_code
    except TimespanError as exc:
        print(f"Error: {exc.public_message}", file=sys.stderr)
        return exc.exit_code
    return 0


if __name__ == "__main__":
    sys.exit(main())
