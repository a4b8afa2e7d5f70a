from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from task_tracker.main import task_tracker

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("Commands & Exit Codes"),
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "TASK_TRACKER_DB_PATH",
        "TASK_TRACKER_AGENT_ID",
        "TASK_TRACKER_PROJECT_ID",
        "TASK_TRACKER_WORKFLOW",
    ):
        monkeypatch.delenv(name, raising=False)


def _invoke(runner: CliRunner, db_path: Path, *args: str):
    group, command, *rest = args
    return runner.invoke(task_tracker, [group, command, "--db-path", str(db_path), *rest])


def _create(runner: CliRunner, db_path: Path, title: str, *extra: str) -> dict:
    result = _invoke(runner, db_path, "task", "create", title, "--json", *extra)
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


def test_db_init_reports_path(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"

    result = _invoke(CliRunner(), db_path, "db", "init")

    assert result.exit_code == 0, result.output
    assert f"Database ready: {db_path}" in result.output
    assert db_path.exists()


def test_create_show_and_list(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    created = runner.invoke(
        task_tracker,
        ["task", "create", "--db-path", str(db_path), "Write docs", "-p", "p1", "--tag", "docs"],
    )
    assert created.exit_code == 0, created.output
    assert "Task created:" in created.output
    assert "Priority: p1" in created.output
    task_id = created.output.splitlines()[0].split(": ", 1)[1]

    shown = _invoke(runner, db_path, "task", "show", task_id, "--json")
    payload = json.loads(shown.output)
    assert payload["task"]["title"] == "Write docs"
    assert payload["task"]["tags"] == ["docs"]
    assert payload["task"]["version"] == 1
    assert payload["depends_on"] == []

    listed = _invoke(runner, db_path, "task", "list", "--tag", "docs")
    assert listed.exit_code == 0, listed.output
    assert listed.output.splitlines()[0] == "Tasks: 1"


def test_version_conflict_exits_with_conflict_code(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    task_id = _create(runner, db_path, "A")["task_id"]

    _invoke(runner, db_path, "task", "transition", task_id, "in_progress")
    _invoke(runner, db_path, "task", "transition", task_id, "completed")
    result = _invoke(runner, db_path, "task", "update", task_id, "--title", "x", "--version", "2")

    assert result.exit_code == 3
    assert "Version mismatch: expected 2, got 3" in result.output


def test_exit_codes_for_not_found_and_validation(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    task_id = _create(runner, db_path, "A")["task_id"]

    missing = _invoke(runner, db_path, "task", "show", "ghost")
    illegal = _invoke(runner, db_path, "task", "transition", task_id, "completed")
    unknown = _invoke(runner, db_path, "task", "transition", task_id, "done")

    assert missing.exit_code == 2
    assert "Task not found: ghost" in missing.output
    assert illegal.exit_code == 4
    assert "Cannot transition from 'pending' to 'completed'" in illegal.output
    assert unknown.exit_code == 4
    assert "Invalid status" in unknown.output


def test_claim_and_release_flow(tmp_path: Path, monkeypatch) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    task_id = _create(runner, db_path, "A")["task_id"]

    no_agent = _invoke(runner, db_path, "task", "claim", task_id)
    assert no_agent.exit_code == 4
    assert "Agent id is required" in no_agent.output

    claimed = _invoke(runner, db_path, "task", "claim", task_id, "--agent", "agent-a", "--json")
    assert json.loads(claimed.output)["success"] is True

    monkeypatch.setenv("TASK_TRACKER_AGENT_ID", "agent-b")
    contended = _invoke(runner, db_path, "task", "claim", task_id)
    assert contended.exit_code == 0
    assert contended.output.splitlines()[0] == "Task already claimed by agent: agent-a"

    released = _invoke(runner, db_path, "task", "release", task_id, "--agent", "agent-a")
    assert released.output.strip() == "Task released successfully"


def test_dependency_commands(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    first = _create(runner, db_path, "A")["task_id"]
    second = _create(runner, db_path, "B")["task_id"]

    added = _invoke(runner, db_path, "task", "depends", first, second)
    assert added.exit_code == 0, added.output
    cycle = _invoke(runner, db_path, "task", "depends", second, first)
    assert cycle.exit_code == 4
    assert "Circular dependency detected" in cycle.output

    blocked = _invoke(runner, db_path, "task", "blocked", "--json")
    ready = _invoke(runner, db_path, "task", "ready", "--json")
    assert [item["task_id"] for item in json.loads(blocked.output)] == [first]
    assert [item["task_id"] for item in json.loads(ready.output)] == [second]


def test_bulk_commands(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    input_path = tmp_path / "tasks.json"
    input_path.write_text(
        json.dumps([{"title": "one", "priority": "p0"}, {"title": "two", "tags": ["x"]}]),
        encoding="utf-8",
    )

    created = _invoke(runner, db_path, "task", "bulk-create", str(input_path), "--json")
    assert created.exit_code == 0, created.output
    ids = [item["task_id"] for item in json.loads(created.output)]
    assert len(ids) == 2

    strict = _invoke(runner, db_path, "task", "bulk-transition", "completed", *ids)
    assert strict.exit_code == 4

    lenient = _invoke(
        runner,
        db_path,
        "task",
        "bulk-transition",
        "in_progress",
        ids[0],
        "ghost",
        "--skip-invalid",
    )
    assert lenient.exit_code == 0, lenient.output
    assert lenient.output.splitlines()[0] == "Updated: 1 Failed: 1"


def test_context_commands(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    task_id = _create(runner, db_path, "A")["task_id"]

    _invoke(runner, db_path, "task", "context-set", task_id, '{"a": {"x": 1}}')
    merged = _invoke(runner, db_path, "task", "context-merge", task_id, '{"a": {"y": 2}}')
    assert merged.exit_code == 0, merged.output

    shown = _invoke(runner, db_path, "task", "context-get", task_id, "--json")
    assert json.loads(shown.output) == {"a": {"x": 1, "y": 2}}

    bad = _invoke(runner, db_path, "task", "context-set", task_id, "[1, 2]")
    assert bad.exit_code == 4


def test_start_finish_and_workspace(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    started = _invoke(runner, db_path, "task", "start", "Fix bug", "--agent", "agent-a", "--json")
    task = json.loads(started.output)
    assert task["status"] == "in_progress"
    assert task["agent_id"] == "agent-a"

    workspace = _invoke(runner, db_path, "task", "workspace", "--agent", "agent-a", "--json")
    snapshot = json.loads(workspace.output)
    assert [item["task_id"] for item in snapshot["my_tasks"]] == [task["task_id"]]

    foreign = _invoke(runner, db_path, "task", "finish", task["task_id"], "--agent", "agent-b")
    assert foreign.exit_code == 3

    finished = _invoke(
        runner,
        db_path,
        "task",
        "finish",
        task["task_id"],
        "--agent",
        "agent-a",
        "--summary",
        "fixed",
    )
    assert finished.exit_code == 0, finished.output
    assert finished.output.startswith(f"Task finished: {task['task_id']} version=2")


def test_project_and_sprint_commands(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    project = json.loads(
        _invoke(runner, db_path, "project", "create", "api", "--path", "/w/api", "--json").output,
    )
    duplicate = _invoke(runner, db_path, "project", "create", "other", "--path", "/w/api")
    assert duplicate.exit_code == 4

    sprint = json.loads(
        _invoke(
            runner,
            db_path,
            "sprint",
            "create",
            "S1",
            "--project-id",
            project["project_id"],
            "--json",
        ).output,
    )
    activated = _invoke(runner, db_path, "sprint", "activate", sprint["sprint_id"])
    assert activated.exit_code == 0, activated.output

    shown = _invoke(runner, db_path, "sprint", "show", sprint["sprint_id"], "--json")
    assert json.loads(shown.output)["sprint"]["status"] == "active"

    listed = _invoke(runner, db_path, "project", "list")
    assert listed.output.splitlines()[0] == "Projects: 1"


def test_bulk_create_rejects_malformed_json_fields(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    _create(runner, db_path, "existing")
    cases = [
        ({"title": "a", "context": [1, 2]}, "Context must be a JSON object"),
        ({"title": "b", "metadata": "text"}, "Metadata must be a JSON object"),
        ({"title": "c", "tags": "urgent"}, "Tags must be a list of strings"),
        ({"title": "d", "acceptance_criteria": "done"}, "Acceptance criteria must be a list"),
    ]

    for item, message in cases:
        input_path = tmp_path / "tasks.json"
        input_path.write_text(json.dumps([item]), encoding="utf-8")
        result = _invoke(runner, db_path, "task", "bulk-create", str(input_path))
        assert result.exit_code == 4, result.output
        assert message in result.output

    listed = _invoke(runner, db_path, "task", "list", "--json")
    assert listed.exit_code == 0, listed.output
    assert [item["title"] for item in json.loads(listed.output)] == ["existing"]


def test_project_update_select_current_and_detect(tmp_path: Path, monkeypatch) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    workdir = tmp_path / "api"
    (workdir / "src").mkdir(parents=True)
    created = _invoke(
        runner,
        db_path,
        "project",
        "create",
        "api",
        "--path",
        str(workdir),
        "--json",
    )
    project_id = json.loads(created.output)["project_id"]

    updated = _invoke(
        runner,
        db_path,
        "project",
        "update",
        project_id,
        "--name",
        "backend",
        "--description",
        "none",
        "--json",
    )
    assert updated.exit_code == 0, updated.output
    assert json.loads(updated.output)["name"] == "backend"

    selected = _invoke(runner, db_path, "project", "select", "--path", str(workdir / "src"))
    assert selected.exit_code == 0, selected.output
    assert selected.output.splitlines()[-1] == f"export TASK_TRACKER_PROJECT_ID={project_id}"
    neither = _invoke(runner, db_path, "project", "select")
    assert neither.exit_code == 4

    source_dir = str(workdir / "src")
    detected = _invoke(runner, db_path, "project", "detect", "--cwd", source_dir, "--json")
    assert json.loads(detected.output)["project"]["project_id"] == project_id
    elsewhere = _invoke(runner, db_path, "project", "detect", "--cwd", str(tmp_path), "--json")
    assert json.loads(elsewhere.output)["detected"] is False

    by_cwd = _invoke(runner, db_path, "project", "current", "--cwd", str(workdir), "--json")
    assert json.loads(by_cwd.output)["source"] == "detected"
    monkeypatch.setenv("TASK_TRACKER_PROJECT_ID", project_id)
    by_env = _invoke(runner, db_path, "project", "current", "--cwd", str(tmp_path))
    assert by_env.output.splitlines()[0] == f"Project: {project_id}"
    assert by_env.output.splitlines()[-1] == "Source: session"


def test_sprint_update_and_active(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    first = json.loads(_invoke(runner, db_path, "sprint", "create", "S1", "--json").output)
    second = json.loads(_invoke(runner, db_path, "sprint", "create", "S2", "--json").output)

    none_active = _invoke(runner, db_path, "sprint", "active")
    assert none_active.output.strip() == "Active sprint: -"

    _invoke(runner, db_path, "sprint", "update", first["sprint_id"], "--status", "active")
    renamed = _invoke(
        runner,
        db_path,
        "sprint",
        "update",
        second["sprint_id"],
        "--name",
        "S2b",
        "--status",
        "active",
        "--json",
    )
    assert renamed.exit_code == 0, renamed.output
    assert json.loads(renamed.output)["name"] == "S2b"

    active = json.loads(_invoke(runner, db_path, "sprint", "active", "--json").output)
    assert active["active"]["sprint_id"] == second["sprint_id"]
    shown = _invoke(runner, db_path, "sprint", "show", first["sprint_id"], "--json")
    assert json.loads(shown.output)["sprint"]["status"] == "planning"

    bad = _invoke(runner, db_path, "sprint", "update", first["sprint_id"], "--status", "done")
    assert bad.exit_code == 4


def test_db_path_and_backup(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    before = json.loads(_invoke(runner, db_path, "db", "path", "--json").output)
    assert before == {"exists": False, "path": str(db_path)}
    missing = _invoke(runner, db_path, "db", "backup")
    assert missing.exit_code == 5

    task_id = _create(runner, db_path, "keep me")["task_id"]
    destination = tmp_path / "backups" / "copy.db"
    backup = _invoke(runner, db_path, "db", "backup", "--output", str(destination))
    assert backup.exit_code == 0, backup.output
    assert backup.output.strip() == f"Backup written: {destination}"

    restored = _invoke(runner, destination, "task", "show", task_id, "--json")
    assert json.loads(restored.output)["task"]["title"] == "keep me"
