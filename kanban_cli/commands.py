from __future__ import annotations

import argparse
import json
import sys
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .cli_shared import KANBAN_API_ENDPOINT
from .cli_shared import GlobalOpts
from .cli_shared import OpError
from .cli_shared import UsageError
from .cli_shared import _print_json
from .cli_shared import _require_str

TASK_STATUSES = ("TODO", "IN_PROGRESS", "DONE")


def _http_request(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    body: bytes | None = None,
    timeout_seconds: int = 30,
) -> tuple[int, dict[str, str], bytes]:
    req = Request(url, data=body, method=str(method).upper())
    for k, v in headers.items():
        req.add_header(k, v)
    try:
        with urlopen(req, timeout=timeout_seconds) as resp:
            status = getattr(resp, "status", 200)
            hdrs = {k.lower(): v for k, v in dict(resp.headers).items()}
            return int(status), hdrs, resp.read()
    except HTTPError as e:
        hdrs = {k.lower(): v for k, v in dict(e.headers).items()}
        data = e.read() if hasattr(e, "read") else b""
        return int(getattr(e, "code", 0) or 0), hdrs, data
    except URLError as e:
        raise OpError(f"http request failed: {e}") from e


def _kanban_request(
    *,
    method: str,
    endpoint: str,
    path: str,
    query: dict[str, Any] | None = None,
    body_obj: dict[str, Any] | None = None,
) -> dict[str, Any]:
    ep = _require_str(endpoint, "kanban endpoint", hint=f"pass --endpoint or set {KANBAN_API_ENDPOINT}")
    p = path if path.startswith("/") else f"/{path}"
    query_clean = {
        k: str(v)
        for k, v in (query or {}).items()
        if v is not None and str(v).strip() != ""
    }
    url = f"{ep.rstrip('/')}{p}"
    if query_clean:
        url += f"?{urlencode(query_clean)}"

    body_bytes = None
    headers = {"accept": "application/json"}
    if body_obj is not None:
        body_bytes = json.dumps(body_obj, separators=(",", ":")).encode("utf-8")
        headers["content-type"] = "application/json"

    status, _hdrs, data = _http_request(method=method, url=url, headers=headers, body=body_bytes)
    text = data.decode("utf-8", errors="replace")
    parsed: Any
    try:
        parsed = json.loads(text) if text else {}
    except json.JSONDecodeError:
        parsed = {"raw": text}

    if status < 200 or status >= 300:
        if isinstance(parsed, dict):
            msg = str(parsed.get("error") or parsed.get("message") or text).strip()
            if parsed.get("retryable"):
                msg += " (retryable)"
        else:
            msg = str(parsed)
        raise OpError(f"kanban request failed: status={status} method={method} path={p} message={msg}")

    if isinstance(parsed, dict):
        return parsed
    return {"result": parsed}


def _cell(value: Any) -> str:
    if isinstance(value, list):
        value = ",".join(str(v) for v in value)
    text = str(value or "").strip()
    return text or "-"


def _print_table(*, headers: list[str], rows: list[list[str]], empty_message: str) -> None:
    if not rows:
        sys.stdout.write(f"{empty_message}\n")
        return
    widths = [len(h) for h in headers]
    for row in rows:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], len(val))
    sys.stdout.write("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)) + "\n")
    sys.stdout.write("  ".join("-" * w for w in widths) + "\n")
    for row in rows:
        sys.stdout.write("  ".join(row[i].ljust(widths[i]) for i in range(len(headers))) + "\n")


def _rows(items: Any, columns: list[str]) -> list[list[str]]:
    if not isinstance(items, list):
        return []
    return [[_cell(item.get(c)) for c in columns] for item in items if isinstance(item, dict)]


def cmd_boards_list(args: argparse.Namespace, g: GlobalOpts) -> int:
    del args
    out = _kanban_request(method="GET", endpoint=g.endpoint, path="/boards")
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    _print_table(
        headers=["ID", "TITLE", "DESCRIPTION", "CREATED"],
        rows=_rows(out.get("boards"), ["id", "title", "description", "createdAt"]),
        empty_message="No boards.",
    )
    return 0


def cmd_boards_create(args: argparse.Namespace, g: GlobalOpts) -> int:
    title = _require_str(args.title, "title", hint="pass --title")
    body: dict[str, Any] = {"title": title}
    if args.description:
        body["description"] = args.description
    out = _kanban_request(method="POST", endpoint=g.endpoint, path="/boards", body_obj=body)
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    sys.stdout.write(f'created board {_cell(out.get("boardId"))} title="{title}"\n')
    return 0


def cmd_boards_delete(args: argparse.Namespace, g: GlobalOpts) -> int:
    board_id = _require_str(args.board_id, "board id", hint="pass BOARD_ID")
    out = _kanban_request(
        method="DELETE",
        endpoint=g.endpoint,
        path="/boards",
        body_obj={"boardId": board_id},
    )
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    msg = f"deleted board {board_id}"
    residual = int(out.get("residual") or 0)
    if residual:
        msg += f" ({residual} item(s) could not be removed; rerun to retry)"
    sys.stdout.write(msg + "\n")
    return 0


def cmd_tasks_list(args: argparse.Namespace, g: GlobalOpts) -> int:
    board_id = _require_str(args.board_id, "board id", hint="pass BOARD_ID")
    out = _kanban_request(method="GET", endpoint=g.endpoint, path="/tasks", query={"boardId": board_id})
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    _print_table(
        headers=["ID", "STATUS", "TITLE", "ASSIGNEES", "DUE", "TAGS"],
        rows=_rows(out.get("tasks"), ["id", "status", "title", "assignees", "dueDate", "tags"]),
        empty_message="No tasks.",
    )
    return 0


def cmd_tasks_create(args: argparse.Namespace, g: GlobalOpts) -> int:
    board_id = _require_str(args.board_id, "board id", hint="pass BOARD_ID")
    title = _require_str(args.title, "title", hint="pass --title")
    status = str(args.status or "").strip().upper()
    if status and status not in TASK_STATUSES:
        raise UsageError(f"invalid status {args.status!r} (expected one of {', '.join(TASK_STATUSES)})")

    body: dict[str, Any] = {
        "boardId": board_id,
        "title": title,
        "assignees": [a for a in (args.assignees or []) if str(a).strip()],
        "tags": [t for t in (args.tags or []) if str(t).strip()],
    }
    for key, value in (
        ("description", args.description),
        ("status", status),
        ("startDate", args.start_date),
        ("dueDate", args.due_date),
    ):
        if value:
            body[key] = value

    out = _kanban_request(method="POST", endpoint=g.endpoint, path="/tasks", body_obj=body)
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    sys.stdout.write(f"created task {_cell(out.get('taskId'))} on board {board_id}\n")
    return 0


def cmd_tasks_status(args: argparse.Namespace, g: GlobalOpts) -> int:
    board_id = _require_str(args.board_id, "board id", hint="pass BOARD_ID")
    task_id = _require_str(args.task_id, "task id", hint="pass TASK_ID")
    status = _require_str(args.status, "status", hint="pass STATUS").upper()
    if status not in TASK_STATUSES:
        raise UsageError(f"invalid status {args.status!r} (expected one of {', '.join(TASK_STATUSES)})")
    out = _kanban_request(
        method="PATCH",
        endpoint=g.endpoint,
        path="/tasks/status",
        body_obj={"boardId": board_id, "taskId": task_id, "status": status},
    )
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    sys.stdout.write(f"task {task_id} -> {status}\n")
    return 0


def cmd_tasks_delete(args: argparse.Namespace, g: GlobalOpts) -> int:
    board_id = _require_str(args.board_id, "board id", hint="pass BOARD_ID")
    task_id = _require_str(args.task_id, "task id", hint="pass TASK_ID")
    out = _kanban_request(
        method="DELETE",
        endpoint=g.endpoint,
        path="/tasks",
        body_obj={"boardId": board_id, "taskId": task_id},
    )
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    sys.stdout.write(f"deleted task {task_id}\n")
    return 0


def cmd_tasks_by_status(args: argparse.Namespace, g: GlobalOpts) -> int:
    status = _require_str(args.status, "status", hint="pass STATUS").upper()
    out = _kanban_request(method="GET", endpoint=g.endpoint, path="/tasks/by-status", query={"status": status})
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    _print_table(
        headers=["ID", "BOARD", "TITLE", "CREATED"],
        rows=_rows(out.get("tasks"), ["id", "boardId", "title", "createdAt"]),
        empty_message=f"No {status} tasks.",
    )
    return 0


def cmd_tasks_by_assignee(args: argparse.Namespace, g: GlobalOpts) -> int:
    assignee_id = _require_str(args.assignee_id, "assignee id", hint="pass ASSIGNEE_ID")
    out = _kanban_request(
        method="GET",
        endpoint=g.endpoint,
        path="/tasks/by-assignee",
        query={"assigneeId": assignee_id},
    )
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    _print_table(
        headers=["ID", "BOARD", "TITLE", "STATUS"],
        rows=_rows(out.get("tasks"), ["id", "boardId", "title", "status"]),
        empty_message=f"No tasks assigned to {assignee_id}.",
    )
    return 0
