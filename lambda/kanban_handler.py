from __future__ import annotations

import base64
import json
import os
import time
from datetime import datetime, timezone
from typing import Any

import boto3
from boto3.dynamodb.conditions import Attr
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

import board_purge
from kanban_ids import new_board_id
from kanban_ids import new_task_id
from kanban_items import STATUS_TODO
from kanban_items import TASK_PREFIX
from kanban_items import TYPE_BOARD
from kanban_items import TYPE_TASK
from kanban_items import Board
from kanban_items import Task
from kanban_items import board_key
from kanban_items import board_partition_key
from kanban_items import board_view
from kanban_items import decode_board
from kanban_items import decode_task
from kanban_items import encode_board
from kanban_items import encode_task
from kanban_items import item_type
from kanban_items import task_assignee_view
from kanban_items import task_key
from kanban_items import task_status_view
from kanban_items import task_view


TABLE_NAME = os.environ.get("KANBAN_TABLE", "")
STATUS_INDEX = os.environ.get("KANBAN_STATUS_INDEX", "status-createdAt-index")
ASSIGNEE_INDEX = os.environ.get("KANBAN_ASSIGNEE_INDEX", "assigneeId-status-index")
SCHEMA_VERSION = os.environ.get("KANBAN_SCHEMA_VERSION", "2026-10-19")


def _env_int(name: str, default: int, *, minimum: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        return default
    return value if value >= minimum else default


PURGE_MAX_ATTEMPTS = _env_int("KANBAN_PURGE_MAX_ATTEMPTS", board_purge.DEFAULT_MAX_ATTEMPTS, minimum=1)
PURGE_BACKOFF_MS = _env_int("KANBAN_PURGE_BACKOFF_MS", board_purge.DEFAULT_BACKOFF_MS, minimum=0)
REQUIRE_BOARD = (os.environ.get("KANBAN_REQUIRE_BOARD") or "").strip().lower() in {"1", "true", "yes", "on"}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "GET,POST,PATCH,DELETE,OPTIONS",
}

# ClientError codes worth retrying from the caller's side.
TRANSIENT_ERROR_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
}

ROUTE_ROOTS = {"boards", "tasks", "health"}

_ddb_resource: Any | None = None


class MissingFields(Exception):
    def __init__(self, fields: list[str]):
        super().__init__(f"Missing {', '.join(fields)}")
        self.fields = fields


class InvalidBody(Exception):
    pass


class BoardNotFound(Exception):
    pass


def _ddb() -> Any:
    global _ddb_resource
    if _ddb_resource is None:
        _ddb_resource = boto3.resource("dynamodb")
    return _ddb_resource


def _table() -> Any:
    return _ddb().Table(TABLE_NAME)


def _now_iso() -> str:
    # Fixed-format UTC timestamp for lexicographic ordering.
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _response(status_code: int, body: dict[str, Any] | None) -> dict[str, Any]:
    return {
        "statusCode": int(status_code),
        "headers": {
            "content-type": "application/json",
            **CORS_HEADERS,
        },
        "body": "" if body is None else json.dumps(body, default=str),
    }


def _error(status_code: int, message: str, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": message}
    payload.update(extra)
    return _response(status_code, payload)


def _request_id(event: dict[str, Any]) -> str:
    rc = event.get("requestContext") or {}
    if isinstance(rc, dict):
        return str(rc.get("requestId") or "").strip()
    return ""


def _parse_body(event: dict[str, Any]) -> dict[str, Any]:
    raw = event.get("body")
    if raw is None:
        return {}
    if not isinstance(raw, str):
        raise InvalidBody("request body must be a JSON object")
    if bool(event.get("isBase64Encoded")):
        try:
            raw = base64.b64decode(raw.encode("utf-8")).decode("utf-8")
        except Exception as e:
            raise InvalidBody("request body base64 decode failed") from e
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidBody("request body must be valid JSON") from e
    if not isinstance(parsed, dict):
        raise InvalidBody("request body must be a JSON object")
    return parsed


def _query_param(event: dict[str, Any], key: str) -> str:
    qs = event.get("queryStringParameters") or {}
    if not isinstance(qs, dict):
        return ""
    val = qs.get(key)
    return str(val).strip() if val is not None else ""


def _str_field(body: dict[str, Any], key: str) -> str:
    val = body.get(key)
    if val is None:
        return ""
    return str(val).strip()


def _str_list(body: dict[str, Any], key: str) -> list[str]:
    val = body.get(key)
    if not isinstance(val, list):
        return []
    return [str(v).strip() for v in val if v is not None and str(v).strip()]


def _required(values: dict[str, str]) -> dict[str, str]:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingFields(missing)
    return values


def _route(event: dict[str, Any]) -> list[str]:
    segments = [s for s in str(event.get("path") or "").split("/") if s]
    # Drop any stage or custom-domain prefix in front of the route root.
    for idx, seg in enumerate(segments):
        if seg in ROUTE_ROOTS:
            return segments[idx:]
    return segments


def _board_exists(board_id: str) -> bool:
    resp = _table().get_item(Key=board_key(board_id))
    return bool(resp.get("Item"))


def _query_all(**kwargs: Any) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    start_key: dict[str, Any] | None = None
    while True:
        if start_key:
            kwargs["ExclusiveStartKey"] = start_key
        page = _table().query(**kwargs)
        out.extend(i for i in page.get("Items", []) or [] if isinstance(i, dict))
        start_key = page.get("LastEvaluatedKey")
        if not start_key:
            return out


def create_board(body: dict[str, Any]) -> dict[str, Any]:
    fields = _required({"title": _str_field(body, "title")})
    board = Board(
        id=new_board_id(),
        title=fields["title"],
        description=_str_field(body, "description"),
        created_at=_now_iso(),
    )
    _table().put_item(Item=encode_board(board))
    return _response(201, {"message": "Board created", "boardId": board.id})


def list_boards() -> dict[str, Any]:
    boards: list[dict[str, Any]] = []
    start_key: dict[str, Any] | None = None
    while True:
        kwargs: dict[str, Any] = {"FilterExpression": Attr("Type").eq(TYPE_BOARD)}
        if start_key:
            kwargs["ExclusiveStartKey"] = start_key
        page = _table().scan(**kwargs)
        for item in page.get("Items", []) or []:
            if isinstance(item, dict) and item_type(item) == TYPE_BOARD:
                boards.append(board_view(decode_board(item)))
        start_key = page.get("LastEvaluatedKey")
        if not start_key:
            break
    return _response(200, {"boards": boards})


def create_task(body: dict[str, Any]) -> dict[str, Any]:
    fields = _required(
        {
            "boardId": _str_field(body, "boardId"),
            "title": _str_field(body, "title"),
        }
    )
    if REQUIRE_BOARD and not _board_exists(fields["boardId"]):
        raise BoardNotFound(fields["boardId"])

    task = Task(
        id=new_task_id(),
        board_id=fields["boardId"],
        title=fields["title"],
        description=_str_field(body, "description"),
        status=_str_field(body, "status") or STATUS_TODO,
        assignees=_str_list(body, "assignees"),
        start_date=_str_field(body, "startDate"),
        due_date=_str_field(body, "dueDate"),
        tags=_str_list(body, "tags"),
        created_at=_now_iso(),
    )
    _table().put_item(Item=encode_task(task))
    return _response(201, {"message": "Task created", "taskId": task.id})


def list_tasks_by_board(board_id: str) -> dict[str, Any]:
    _required({"boardId": board_id})
    items = _query_all(
        KeyConditionExpression=Key("PK").eq(board_partition_key(board_id)) & Key("SK").begins_with(TASK_PREFIX),
    )
    tasks = [task_view(decode_task(i)) for i in items]
    return _response(200, {"tasks": tasks})


def list_tasks_by_status(status: str) -> dict[str, Any]:
    _required({"status": status})
    items = _query_all(
        IndexName=STATUS_INDEX,
        KeyConditionExpression=Key("status").eq(status),
        ScanIndexForward=True,  # oldest first
    )
    tasks = [task_status_view(decode_task(i)) for i in items if item_type(i) == TYPE_TASK]
    return _response(200, {"tasks": tasks})


def list_tasks_by_assignee(assignee_id: str) -> dict[str, Any]:
    _required({"assigneeId": assignee_id})
    items = _query_all(
        IndexName=ASSIGNEE_INDEX,
        KeyConditionExpression=Key("assigneeId").eq(assignee_id),
    )
    tasks = [task_assignee_view(decode_task(i)) for i in items if item_type(i) == TYPE_TASK]
    return _response(200, {"tasks": tasks})


def update_task_status(body: dict[str, Any]) -> dict[str, Any]:
    fields = _required(
        {
            "boardId": _str_field(body, "boardId"),
            "taskId": _str_field(body, "taskId"),
            "status": _str_field(body, "status"),
        }
    )
    _table().update_item(
        Key=task_key(fields["boardId"], fields["taskId"]),
        UpdateExpression="SET #s = :s",
        ExpressionAttributeNames={"#s": "status"},
        ExpressionAttributeValues={":s": fields["status"]},
    )
    return _response(200, {"ok": True})


def delete_task(board_id: str, task_id: str) -> dict[str, Any]:
    fields = _required({"boardId": board_id, "taskId": task_id})
    _table().delete_item(Key=task_key(fields["boardId"], fields["taskId"]))
    return _response(200, {"ok": True})


def delete_board(board_id: str, wide_event: dict[str, Any]) -> dict[str, Any]:
    _required({"boardId": board_id})
    report = board_purge.purge_board(
        _ddb(),
        TABLE_NAME,
        board_id,
        max_attempts=PURGE_MAX_ATTEMPTS,
        backoff_ms=PURGE_BACKOFF_MS,
    )
    summary = report.summary()
    wide_event["purge"] = summary
    return _response(
        200,
        {
            "ok": True,
            "deleted": summary["enumerated"] - summary["residual"],
            "residual": summary["residual"],
        },
    )


def _dispatch(event: dict[str, Any], method: str, route: list[str], wide_event: dict[str, Any]) -> dict[str, Any]:
    if method == "OPTIONS":
        return _response(204, None)

    if route == ["health"] and method == "GET":
        return _response(200, {"ok": True})

    if route == ["boards"]:
        if method == "GET":
            return list_boards()
        if method == "POST":
            return create_board(_parse_body(event))
        if method == "DELETE":
            body = _parse_body(event)
            return delete_board(_str_field(body, "boardId") or _query_param(event, "boardId"), wide_event)

    if route == ["tasks"]:
        if method == "GET":
            return list_tasks_by_board(_query_param(event, "boardId"))
        if method == "POST":
            return create_task(_parse_body(event))
        if method == "DELETE":
            body = _parse_body(event)
            return delete_task(
                _str_field(body, "boardId") or _query_param(event, "boardId"),
                _str_field(body, "taskId") or _query_param(event, "taskId"),
            )

    if route == ["tasks", "status"] and method == "PATCH":
        return update_task_status(_parse_body(event))

    if route == ["tasks", "by-status"] and method == "GET":
        return list_tasks_by_status(_query_param(event, "status"))

    if route == ["tasks", "by-assignee"] and method == "GET":
        return list_tasks_by_assignee(_query_param(event, "assigneeId"))

    return _error(404, "Not Found")


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    start = time.time()
    method = str(event.get("httpMethod") or "").upper()
    route = _route(event)

    wide_event: dict[str, Any] = {
        "event": "kanban_request",
        "schema_version": SCHEMA_VERSION,
        "request_id": _request_id(event),
        "ts": _now_iso(),
        "method": method,
        "route": "/" + "/".join(route),
    }
    out: dict[str, Any] = _error(500, "Internal Server Error")

    try:
        if not TABLE_NAME:
            wide_event["outcome"] = "misconfigured"
            out = _error(500, "Internal Server Error")
            return out

        out = _dispatch(event, method, route, wide_event)
        wide_event["outcome"] = "success" if int(out["statusCode"]) < 400 else "not_found"
        return out
    except MissingFields as e:
        wide_event["outcome"] = "invalid_request"
        wide_event["missing"] = e.fields
        out = _error(400, str(e))
        return out
    except InvalidBody as e:
        wide_event["outcome"] = "invalid_request"
        out = _error(400, "Invalid request body", detail=str(e))
        return out
    except BoardNotFound:
        wide_event["outcome"] = "not_found"
        out = _error(404, "Board not found")
        return out
    except ClientError as e:
        code = str(e.response.get("Error", {}).get("Code") or "")
        wide_event["error"] = {"type": type(e).__name__, "code": code, "message": str(e)}
        if code in TRANSIENT_ERROR_CODES:
            wide_event["outcome"] = "throttled"
            out = _error(503, "Service Unavailable", retryable=True)
        else:
            wide_event["outcome"] = "error"
            out = _error(500, "Internal Server Error")
        return out
    except Exception as e:
        wide_event["outcome"] = "error"
        wide_event["error"] = {"type": type(e).__name__, "message": str(e)}
        out = _error(500, "Internal Server Error")
        return out
    finally:
        wide_event["status_code"] = int(out["statusCode"])
        wide_event["duration_ms"] = int((time.time() - start) * 1000)
        print(json.dumps(wide_event, separators=(",", ":"), sort_keys=True, default=str))
