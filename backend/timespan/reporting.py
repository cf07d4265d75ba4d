"""Read-only aggregation of time entries into reports and report files."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from openpyxl import Workbook
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from . import store
from .config import settings
from .errors import ValidationError
from .models import TimeEntry
from .schemas import ProjectSummary, Report, ReportEntry
from .utils import LOCAL_TZ, day_bounds, format_duration, from_db_datetime, now

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {"json", "xlsx", "pdf"}


def _report_entry(entry: TimeEntry) -> ReportEntry:
    return ReportEntry(
        id=entry.id,
        project_name=entry.project_name,
        task_description=entry.task,
        start_time=from_db_datetime(entry.start_time),
        end_time=from_db_datetime(entry.end_time),
        duration=entry.duration,
        tags=list(entry.tags or []),
        source=entry.source,
    )


def build_report(
    entries: Iterable[TimeEntry],
    kind: str,
    range_start: Optional[dt.datetime] = None,
    range_end: Optional[dt.datetime] = None,
) -> Report:
    """Aggregate entries in one pass; the input order does not matter."""
    rows: List[ReportEntry] = []
    total = dt.timedelta(0)
    subtotals: Dict[str, Tuple[dt.timedelta, int]] = {}
    for entry in entries:
        row = _report_entry(entry)
        rows.append(row)
        total += row.duration
        duration, count = subtotals.get(row.project_name, (dt.timedelta(0), 0))
        subtotals[row.project_name] = (duration + row.duration, count + 1)
    rows.sort(key=lambda row: (row.start_time, row.project_name, row.id))
    summaries = [
        ProjectSummary(project_name=name, total_duration=duration, entry_count=count)
        for name, (duration, count) in sorted(subtotals.items())
    ]
    return Report(
        kind=kind,
        range_start=range_start,
        range_end=range_end,
        total_duration=total,
        entries=rows,
        project_summaries=summaries,
    )


def daily_report(db: Session, day: dt.date) -> Report:
    start, end = day_bounds(day)
    return build_report(store.list_time_entries(db, start=start, end=end), "daily", start, end)


def weekly_report(db: Session, week_start: dt.date) -> Report:
    """Seven days starting at ``week_start``."""
    start, end = day_bounds(week_start, days=7)
    return build_report(store.list_time_entries(db, start=start, end=end), "weekly", start, end)


def filtered_report(
    db: Session,
    project_id: str,
    start: Optional[dt.datetime] = None,
    end: Optional[dt.datetime] = None,
) -> Report:
    store.get_project(db, project_id)
    entries = store.list_time_entries(db, project_id=project_id, start=start, end=end)
    return build_report(entries, "project", start, end)


def current_week_start(today: Optional[dt.date] = None) -> dt.date:
    today = today or now().astimezone(LOCAL_TZ).date()
    return today - dt.timedelta(days=today.weekday())


def export_json(report: Report) -> str:
    return report.model_dump_json(indent=2)


def _write_xlsx(path: Path, report: Report) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Entries"
    ws.append(["Project", "Task", "Start", "End", "Duration (h)", "Tags", "Source"])
    for entry in report.entries:
        ws.append(
            [
                entry.project_name,
                entry.task_description or "",
                entry.start_time.isoformat(),
                entry.end_time.isoformat(),
                round(entry.duration.total_seconds() / 3600, 2),
                ", ".join(entry.tags),
                entry.source,
            ]
        )
    summary = wb.create_sheet("Projects")
    summary.append(["Project", "Entries", "Duration (h)"])
    for item in report.project_summaries:
        summary.append([item.project_name, item.entry_count, round(item.total_duration.total_seconds() / 3600, 2)])
    summary.append(["Total", len(report.entries), round(report.total_duration.total_seconds() / 3600, 2)])
    wb.save(path)


def _write_pdf(path: Path, title: str, report: Report) -> None:
    pdf = canvas.Canvas(str(path), pagesize=A4)
    width, height = A4
    y = height - 2 * cm
    pdf.setTitle(title)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(2 * cm, y, title)
    y -= 1 * cm
    pdf.setFont("Helvetica", 11)
    lines = [
        f"{entry.start_time:%Y-%m-%d %H:%M} | {entry.project_name} | "
        f"{format_duration(entry.duration)} | {entry.task_description or ''}"
        for entry in report.entries
    ] or ["No entries"]
    lines.append("")
    lines.extend(
        f"{item.project_name}: {format_duration(item.total_duration)} ({item.entry_count} entries)"
        for item in report.project_summaries
    )
    lines.append(f"Total: {format_duration(report.total_duration)}")
    for line in lines:
        pdf.drawString(2 * cm, y, line)
        y -= 0.8 * cm
        if y < 2 * cm:
            pdf.showPage()
            y = height - 2 * cm
            pdf.setFont("Helvetica", 11)
    pdf.save()


def export_report(report: Report, export_format: str, path: Optional[Path] = None) -> Path:
    """Write the report to ``path`` (or the export directory) and return the file."""
    if export_format not in EXPORT_FORMATS:
        raise ValidationError(f"unsupported export format: {export_format}")
    if path is None:
        stamp = int(now().timestamp())
        path = settings.export_dir / f"report_{report.kind}_{stamp}.{export_format}"
    path.parent.mkdir(parents=True, exist_ok=True)
    if export_format == "json":
        path.write_text(export_json(report), encoding="utf-8")
    elif export_format == "xlsx":
        _write_xlsx(path, report)
    else:
        _write_pdf(path, f"TimeSpan report - {report.kind}", report)
    logger.info("Exported %s report to %s", report.kind, path)
    return path
