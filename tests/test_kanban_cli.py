import argparse
import json
import re

import pytest
from typer.testing import CliRunner

from kanban_cli import __version__
from kanban_cli.cli_shared import GlobalOpts
from kanban_cli.cli_shared import OpError
from kanban_cli.cli_shared import UsageError
from kanban_cli.commands import _kanban_request
from kanban_cli.commands import cmd_boards_create
from kanban_cli.commands import cmd_boards_delete
from kanban_cli.commands import cmd_boards_list
from kanban_cli.commands import cmd_tasks_by_assignee
from kanban_cli.commands import cmd_tasks_by_status
from kanban_cli.commands import cmd_tasks_create
from kanban_cli.commands import cmd_tasks_list
from kanban_cli.commands import cmd_tasks_status
from kanban_cli.main import app
from kanban_cli.main import main

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
ENDPOINT = "https://example.invalid/prod"


def _plain(s: str) -> str:
    return _ANSI_RE.sub("", s)


def _g(*, json_output: bool = False) -> GlobalOpts:
    return GlobalOpts(endpoint=ENDPOINT, pretty=False, json_output=json_output)


def _capture_requests(monkeypatch, response: dict) -> list:
    calls: list = []

    def fake_request(**kwargs):
        calls.append(kwargs)
        return response

    monkeypatch.setattr("kanban_cli.commands._kanban_request", fake_request)
    return calls


def test_cmd_boards_create_posts_title(monkeypatch, capsys):
    calls = _capture_requests(monkeypatch, {"message": "Board created", "boardId": "board-1"})

    args = argparse.Namespace(title="Roadmap", description=None)
    assert cmd_boards_create(args, _g()) == 0

    assert 'created board board-1 title="Roadmap"' in capsys.readouterr().out
    assert calls[0]["method"] == "POST"
    assert calls[0]["path"] == "/boards"
    assert calls[0]["body_obj"] == {"title": "Roadmap"}


def test_cmd_boards_create_json_output(monkeypatch, capsys):
    _capture_requests(monkeypatch, {"message": "Board created", "boardId": "board-1"})

    args = argparse.Namespace(title="Roadmap", description="Q4")
    assert cmd_boards_create(args, _g(json_output=True)) == 0

    assert json.loads(capsys.readouterr().out) == {"boardId": "board-1", "message": "Board created"}


def test_cmd_boards_list_renders_table(monkeypatch, capsys):
    _capture_requests(
        monkeypatch,
        {"boards": [{"id": "b1", "title": "Roadmap", "description": "", "createdAt": "2026-10-19T08:00:00.000000Z"}]},
    )

    assert cmd_boards_list(argparse.Namespace(), _g()) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["ID", "TITLE", "DESCRIPTION", "CREATED"]
    assert lines[2].split() == ["b1", "Roadmap", "-", "2026-10-19T08:00:00.000000Z"]


def test_cmd_boards_list_empty(monkeypatch, capsys):
    _capture_requests(monkeypatch, {"boards": []})
    assert cmd_boards_list(argparse.Namespace(), _g()) == 0
    assert capsys.readouterr().out.strip() == "No boards."


def test_cmd_boards_delete_mentions_residual(monkeypatch, capsys):
    calls = _capture_requests(monkeypatch, {"ok": True, "deleted": 30, "residual": 2})

    assert cmd_boards_delete(argparse.Namespace(board_id="b1"), _g()) == 0

    out = capsys.readouterr().out
    assert "deleted board b1" in out
    assert "2 item(s) could not be removed" in out
    assert calls[0]["method"] == "DELETE"
    assert calls[0]["body_obj"] == {"boardId": "b1"}


def test_cmd_tasks_create_builds_body(monkeypatch, capsys):
    calls = _capture_requests(monkeypatch, {"message": "Task created", "taskId": "t1"})

    args = argparse.Namespace(
        board_id="b1",
        title="Ship it",
        description=None,
        status="in_progress",
        assignees=["ann", "", "bo"],
        tags=["release"],
        start_date=None,
        due_date="2026-11-01",
    )
    assert cmd_tasks_create(args, _g()) == 0

    assert "created task t1 on board b1" in capsys.readouterr().out
    assert calls[0]["body_obj"] == {
        "boardId": "b1",
        "title": "Ship it",
        "status": "IN_PROGRESS",
        "assignees": ["ann", "bo"],
        "tags": ["release"],
        "dueDate": "2026-11-01",
    }


def test_cmd_tasks_create_rejects_unknown_status(monkeypatch):
    calls = _capture_requests(monkeypatch, {})
    args = argparse.Namespace(
        board_id="b1",
        title="t",
        description=None,
        status="BLOCKED",
        assignees=[],
        tags=[],
        start_date=None,
        due_date=None,
    )
    with pytest.raises(UsageError, match="invalid status"):
        cmd_tasks_create(args, _g())
    assert calls == []


def test_cmd_tasks_status_patches(monkeypatch, capsys):
    calls = _capture_requests(monkeypatch, {"ok": True})

    args = argparse.Namespace(board_id="b1", task_id="t1", status="done")
    assert cmd_tasks_status(args, _g()) == 0

    assert "task t1 -> DONE" in capsys.readouterr().out
    assert calls[0]["method"] == "PATCH"
    assert calls[0]["path"] == "/tasks/status"
    assert calls[0]["body_obj"] == {"boardId": "b1", "taskId": "t1", "status": "DONE"}


def test_cmd_tasks_list_and_queries_use_query_params(monkeypatch, capsys):
    calls = _capture_requests(monkeypatch, {"tasks": []})

    assert cmd_tasks_list(argparse.Namespace(board_id="b1"), _g()) == 0
    assert cmd_tasks_by_status(argparse.Namespace(status="todo"), _g()) == 0
    assert cmd_tasks_by_assignee(argparse.Namespace(assignee_id="unassigned"), _g()) == 0

    assert [(c["path"], c["query"]) for c in calls] == [
        ("/tasks", {"boardId": "b1"}),
        ("/tasks/by-status", {"status": "TODO"}),
        ("/tasks/by-assignee", {"assigneeId": "unassigned"}),
    ]
    out = capsys.readouterr().out
    assert "No tasks." in out
    assert "No TODO tasks." in out
    assert "No tasks assigned to unassigned." in out


def test_kanban_request_builds_url_and_body(monkeypatch):
    captured: dict = {}

    def fake_http(*, method, url, headers, body=None, timeout_seconds=30):
        captured.update(method=method, url=url, headers=headers, body=body)
        return 200, {}, b'{"tasks": []}'

    monkeypatch.setattr("kanban_cli.commands._http_request", fake_http)

    out = _kanban_request(method="GET", endpoint=ENDPOINT + "/", path="tasks", query={"boardId": "b1", "x": ""})

    assert out == {"tasks": []}
    assert captured["url"] == f"{ENDPOINT}/tasks?boardId=b1"
    assert captured["body"] is None

    _kanban_request(method="POST", endpoint=ENDPOINT, path="/boards", body_obj={"title": "x"})
    assert captured["headers"]["content-type"] == "application/json"
    assert json.loads(captured["body"]) == {"title": "x"}


def test_kanban_request_surfaces_server_error(monkeypatch):
    monkeypatch.setattr(
        "kanban_cli.commands._http_request",
        lambda **_kw: (503, {}, b'{"error": "Service Unavailable", "retryable": true}'),
    )

    with pytest.raises(OpError) as exc:
        _kanban_request(method="GET", endpoint=ENDPOINT, path="/boards")

    assert "status=503" in str(exc.value)
    assert "message=Service Unavailable (retryable)" in str(exc.value)


def test_kanban_request_requires_endpoint():
    with pytest.raises(UsageError, match="KANBAN_API_ENDPOINT"):
        _kanban_request(method="GET", endpoint="", path="/boards")


def test_cli_passes_endpoint_to_commands(monkeypatch):
    calls = _capture_requests(monkeypatch, {"message": "Board created", "boardId": "board-9"})

    runner = CliRunner()
    result = runner.invoke(app, ["--endpoint", ENDPOINT, "boards", "create", "--title", "Ops"])

    assert result.exit_code == 0
    assert "created board board-9" in result.output
    assert calls[0]["endpoint"] == ENDPOINT


def test_cli_reads_endpoint_from_env(monkeypatch):
    monkeypatch.setenv("KANBAN_API_ENDPOINT", ENDPOINT)
    calls = _capture_requests(monkeypatch, {"tasks": []})

    result = CliRunner().invoke(app, ["--json", "tasks", "by-status", "DONE"])

    assert result.exit_code == 0
    assert json.loads(result.output) == {"tasks": []}
    assert calls[0]["endpoint"] == ENDPOINT


def test_cli_repeatable_assignee_option(monkeypatch):
    calls = _capture_requests(monkeypatch, {"taskId": "t1"})

    result = CliRunner().invoke(
        app,
        ["--endpoint", ENDPOINT, "tasks", "create", "b1", "--title", "x", "--assignee", "ann", "--assignee", "bo"],
    )

    assert result.exit_code == 0
    assert calls[0]["body_obj"]["assignees"] == ["ann", "bo"]


def test_cli_usage_error_exits_2(monkeypatch):
    monkeypatch.delenv("KANBAN_API_ENDPOINT", raising=False)
    result = CliRunner().invoke(app, ["boards", "list"])
    assert result.exit_code == 2


def test_cli_op_error_exits_1(monkeypatch):
    def failing(**_kwargs):
        raise OpError("kanban request failed: status=500")

    monkeypatch.setattr("kanban_cli.commands._kanban_request", failing)
    result = CliRunner().invoke(app, ["--endpoint", ENDPOINT, "boards", "list"])
    assert result.exit_code == 1


def test_help_lists_groups():
    result = CliRunner().invoke(app, ["--help"])
    assert result.exit_code == 0
    output = _plain(result.output)
    assert "boards" in output
    assert "tasks" in output
    assert "--endpoint" in output


def test_main_version(capsys):
    assert main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == f"kanban {__version__}"


def test_main_missing_option_returns_usage_code(monkeypatch):
    monkeypatch.setenv("KANBAN_API_ENDPOINT", ENDPOINT)
    assert main(["boards", "create"]) == 2
