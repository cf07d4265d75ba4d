from __future__ import annotations

from conftest import requires_git


def _create_project(client, name: str, **extra) -> dict:
    response = client.post("/projects", json={"name": name, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def test_healthcheck(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_project_lifecycle(client):
    project = _create_project(client, "Alpha", description="first")
    assert project["name"] == "Alpha"
    assert project["is_client"] is False

    duplicate = client.post("/projects", json={"name": "Alpha"})
    assert duplicate.status_code == 409

    invalid = client.post("/projects", json={"name": "  "})
    assert invalid.status_code == 422
    assert invalid.json()["detail"] == "project name must not be empty"

    updated = client.patch(f"/projects/{project['id']}", json={"client_path": "/work/alpha"})
    assert updated.status_code == 200
    assert updated.json()["description"] == "first"
    assert updated.json()["is_client"] is True

    listing = client.get("/projects", params={"clients_only": True}).json()
    assert [p["name"] for p in listing] == ["Alpha"]

    assert client.delete(f"/projects/{project['id']}").status_code == 204
    assert client.delete(f"/projects/{project['id']}").status_code == 404


def test_timer_workflow(client):
    alpha = _create_project(client, "Alpha")

    started = client.post("/timer/start", json={"project": "Alpha", "task": "task A", "tags": ["deep"]})
    assert started.status_code == 201, started.text
    assert started.json()["project_id"] == alpha["id"]

    conflict = client.post("/timer/start", json={"project": "Beta"})
    assert conflict.status_code == 409
    assert conflict.json()["project_name"] == "Alpha"

    current = client.get("/timer").json()
    assert current["state"] == "running"
    assert current["project_name"] == "Alpha"
    assert current["task"] == "task A"
    assert len(current["elapsed"]) == 2

    blocked = client.delete(f"/projects/{alpha['id']}")
    assert blocked.status_code == 412

    stopped = client.post("/timer/stop")
    assert stopped.status_code == 200
    entry = stopped.json()
    assert entry["project_name"] == "Alpha"
    assert entry["task_description"] == "task A"
    assert entry["tags"] == ["deep"]

    assert client.get("/timer").json()["state"] == "idle"
    assert client.post("/timer/stop").status_code == 404


def test_start_requires_known_project(client):
    assert client.post("/timer/start", json={"project": "Nope"}).status_code == 404
    assert client.post("/timer/start", json={}).status_code == 422


def test_manual_entries_and_reports(client, sample_day):
    alpha = _create_project(client, "Alpha")
    beta = _create_project(client, "Beta")

    for project, start, end in (
        (alpha, "09:00", "10:30"),
        (beta, "11:00", "12:00"),
    ):
        response = client.post(
            "/entries",
            json={
                "project_id": project["id"],
                "start_time": f"{sample_day}T{start}:00+00:00",
                "end_time": f"{sample_day}T{end}:00+00:00",
                "duration": [1, 0],
            },
        )
        assert response.status_code == 201, response.text
        assert response.json()["duration"] != [1, 0]

    backwards = client.post(
        "/entries",
        json={
            "project_id": alpha["id"],
            "start_time": f"{sample_day}T10:00:00+00:00",
            "end_time": f"{sample_day}T09:00:00+00:00",
        },
    )
    assert backwards.status_code == 422

    entries = client.get("/entries", params={"project_id": alpha["id"]}).json()
    assert len(entries) == 1
    tagged = client.post(f"/entries/{entries[0]['id']}/tags", json={"tag": "billable"})
    assert tagged.json()["tags"] == ["billable"]
    untagged = client.delete(f"/entries/{entries[0]['id']}/tags/billable")
    assert untagged.json()["tags"] == []

    daily = client.get(f"/reports/daily/{sample_day}")
    assert daily.status_code == 200
    payload = daily.json()
    assert payload["empty"] is False
    assert payload["total_duration"] == [9000, 0]
    assert [s["project_name"] for s in payload["project_summaries"]] == ["Alpha", "Beta"]

    weekly = client.get(f"/reports/weekly/{sample_day}").json()
    assert weekly["total_duration"] == [9000, 0]

    by_project = client.get(f"/reports/project/{beta['id']}").json()
    assert by_project["total_duration"] == [3600, 0]

    empty = client.get("/reports/daily/2023-12-31").json()
    assert empty["empty"] is True
    assert empty["entries"] == []

    assert client.get("/store").json()["last_modified"] is not None


def test_report_export(client, sample_day, tmp_path, monkeypatch):
    from timespan.config import settings

    monkeypatch.setattr(settings, "export_dir", tmp_path)
    response = client.post(f"/reports/daily/{sample_day}/export", params={"format": "xlsx"})
    assert response.status_code == 200
    assert response.json()["path"].endswith(".xlsx")

    unsupported = client.post(f"/reports/weekly/{sample_day}/export", params={"format": "csv"})
    assert unsupported.status_code == 422


def test_register_clients(client):
    response = client.post(
        "/projects/clients",
        json={"candidates": [{"name": "acme", "path": "/clients/acme"}], "dry_run": True},
    )
    assert response.json()["planned"] == ["[CLIENT] acme"]
    created = client.post("/projects/clients", json={"candidates": [{"name": "acme", "path": "/clients/acme"}]})
    assert created.json()["created"][0]["client_path"] == "/clients/acme"


def test_git_analysis_of_missing_repository(client, tmp_path):
    response = client.post("/git/analyze", json={"repo_path": str(tmp_path / "missing")})
    assert response.status_code == 502
    assert response.json()["detail"] == "repository analysis failed"


@requires_git
def test_git_import_over_http(client, git_repo):
    project = _create_project(client, "Alpha")
    git_repo.commit("fix: greeting", {"app.py": "print('hello')\n"})

    preview = client.post("/git/analyze", json={"repo_path": str(git_repo.path)}).json()
    assert preview[0]["classification"] == "BugFix"
    assert preview[0]["estimated_duration"] == [1800, 0]

    imported = client.post("/git/import", json={"repo_path": str(git_repo.path), "project_id": project["id"]})
    assert len(imported.json()["created"]) == 1
    again = client.post("/git/import", json={"repo_path": str(git_repo.path), "project_id": project["id"]})
    assert again.json()["created"] == []
    assert len(again.json()["skipped"]) == 1
