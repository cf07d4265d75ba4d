from __future__ import annotations

import json

from timespan.__main__ import main
from timespan.errors import AlreadyTrackingError, NotTrackingError, PreconditionError, ProjectExistsError


def run(session_factory, capsys, *argv: str):
    code = main(list(argv), session_factory=session_factory)
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def test_project_commands(session_factory, capsys):
    assert run(session_factory, capsys, "project", "create", "Alpha", "-d", "first")[0] == 0

    code, _, err = run(session_factory, capsys, "project", "create", "Alpha")
    assert code == ProjectExistsError.exit_code
    assert "already exists" in err

    code, out, _ = run(session_factory, capsys, "project", "list")
    assert code == 0
    assert "Alpha - first" in out

    assert run(session_factory, capsys, "project", "delete", "Alpha")[0] == 0
    assert "No projects" in run(session_factory, capsys, "project", "list")[1]


def test_timer_commands(session_factory, capsys):
    run(session_factory, capsys, "project", "create", "Alpha")

    code, out, _ = run(session_factory, capsys, "start", "Alpha", "--task", "task A", "--tag", "deep")
    assert code == 0
    assert "Alpha" in out

    code, _, err = run(session_factory, capsys, "start", "Beta")
    assert code == AlreadyTrackingError.exit_code
    assert "'Alpha'" in err

    code, out, _ = run(session_factory, capsys, "status")
    assert code == 0
    assert out.startswith("Alpha (0h 0m) - task A")

    code, _, err = run(session_factory, capsys, "project", "delete", "Alpha")
    assert code == PreconditionError.exit_code

    assert run(session_factory, capsys, "stop")[0] == 0
    assert "No active timer" in run(session_factory, capsys, "status")[1]
    assert run(session_factory, capsys, "stop")[0] == NotTrackingError.exit_code


def test_report_json(session_factory, capsys):
    code, out, _ = run(session_factory, capsys, "report", "daily", "--date", "2024-01-01", "--json")
    assert code == 0
    payload = json.loads(out)
    assert payload["kind"] == "daily"
    assert payload["empty"] is True


def test_report_files(session_factory, capsys, tmp_path):
    run(session_factory, capsys, "project", "create", "Alpha")
    run(session_factory, capsys, "start", "Alpha")
    run(session_factory, capsys, "stop")

    xlsx = tmp_path / "week.xlsx"
    pdf = tmp_path / "week.pdf"
    code, out, _ = run(session_factory, capsys, "report", "weekly", "--xlsx", str(xlsx), "--pdf", str(pdf))

    assert code == 0
    assert "Total:" in out
    assert xlsx.exists()
    assert pdf.exists()


def test_unknown_project_for_report(session_factory, capsys):
    code, _, err = run(session_factory, capsys, "report", "project", "Nope")
    assert code == 4
    assert "project not found" in err


def test_git_analyze_missing_repository(session_factory, capsys, tmp_path):
    code, _, err = run(session_factory, capsys, "git", "analyze", "--repo", str(tmp_path / "missing"))
    assert code == 7
    assert "repository analysis failed" in err
