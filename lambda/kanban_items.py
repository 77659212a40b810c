"""Single-table item layout for boards and tasks.

Both entity types live in one table keyed by ``PK``/``SK``:

    Board  PK=BOARD#<boardId>  SK=BOARD#<boardId>  Type=Board
    Task   PK=BOARD#<boardId>  SK=TASK#<taskId>    Type=Task

Tasks additionally carry ``status``/``createdAt`` (status index) and
``assigneeId`` (assignee index). This module is the only place that builds or
parses those keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

BOARD_PREFIX = "BOARD#"
TASK_PREFIX = "TASK#"

TYPE_BOARD = "Board"
TYPE_TASK = "Task"

STATUS_TODO = "TODO"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_DONE = "DONE"

UNASSIGNED = "unassigned"


@dataclass
class Board:
    id: str
    title: str
    description: str = ""
    created_at: str = ""


@dataclass
class Task:
    id: str
    board_id: str
    title: str
    description: str = ""
    status: str = STATUS_TODO
    assignees: list[str] = field(default_factory=list)
    start_date: str = ""
    due_date: str = ""
    tags: list[str] = field(default_factory=list)
    created_at: str = ""

    @property
    def primary_assignee(self) -> str:
        # Index key attributes may not be empty strings.
        first = self.assignees[0].strip() if self.assignees else ""
        return first or UNASSIGNED


StorageItem = Union[Board, Task]


def board_partition_key(board_id: str) -> str:
    return f"{BOARD_PREFIX}{board_id}"


def task_sort_key(task_id: str) -> str:
    return f"{TASK_PREFIX}{task_id}"


def board_key(board_id: str) -> dict[str, str]:
    pk = board_partition_key(board_id)
    return {"PK": pk, "SK": pk}


def task_key(board_id: str, task_id: str) -> dict[str, str]:
    return {"PK": board_partition_key(board_id), "SK": task_sort_key(task_id)}


def _strip_prefix(value: Any, prefix: str) -> str:
    s = _text(value)
    return s[len(prefix):] if s.startswith(prefix) else s


def board_id_from_key(pk: Any) -> str:
    return _strip_prefix(pk, BOARD_PREFIX)


def task_id_from_key(sk: Any) -> str:
    return _strip_prefix(sk, TASK_PREFIX)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _text_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [_text(v) for v in value]


def encode_board(board: Board) -> dict[str, Any]:
    item = board_key(board.id)
    item.update(
        {
            "Type": TYPE_BOARD,
            "title": board.title,
            "description": board.description or "",
            "createdAt": board.created_at,
        }
    )
    return item


def encode_task(task: Task) -> dict[str, Any]:
    item = task_key(task.board_id, task.id)
    item.update(
        {
            "Type": TYPE_TASK,
            "title": task.title,
            "description": task.description or "",
            "status": task.status or STATUS_TODO,
            "assigneeId": task.primary_assignee,
            "assignees": list(task.assignees),
            "createdAt": task.created_at,
            "startDate": task.start_date or "",
            "dueDate": task.due_date or "",
            "tags": list(task.tags),
        }
    )
    return item


def decode_board(item: dict[str, Any]) -> Board:
    return Board(
        id=board_id_from_key(item.get("PK")),
        title=_text(item.get("title")),
        description=_text(item.get("description")),
        created_at=_text(item.get("createdAt")),
    )


def decode_task(item: dict[str, Any]) -> Task:
    return Task(
        id=task_id_from_key(item.get("SK")),
        board_id=board_id_from_key(item.get("PK")),
        title=_text(item.get("title")),
        description=_text(item.get("description")),
        status=_text(item.get("status")) or STATUS_TODO,
        assignees=_text_list(item.get("assignees")),
        start_date=_text(item.get("startDate")),
        due_date=_text(item.get("dueDate")),
        tags=_text_list(item.get("tags")),
        created_at=_text(item.get("createdAt")),
    )


def item_type(item: dict[str, Any]) -> str:
    tag = _text(item.get("Type"))
    if tag in {TYPE_BOARD, TYPE_TASK}:
        return tag
    # Older rows may lack the tag; the sort key still tells them apart.
    if _text(item.get("SK")).startswith(TASK_PREFIX):
        return TYPE_TASK
    return TYPE_BOARD


def encode_item(entity: StorageItem) -> dict[str, Any]:
    if isinstance(entity, Task):
        return encode_task(entity)
    if isinstance(entity, Board):
        return encode_board(entity)
    raise TypeError(f"unsupported storage entity: {type(entity).__name__}")


def decode_item(item: dict[str, Any]) -> StorageItem:
    if item_type(item) == TYPE_TASK:
        return decode_task(item)
    return decode_board(item)


def board_view(board: Board) -> dict[str, Any]:
    return {
        "id": board.id,
        "title": board.title,
        "description": board.description,
        "createdAt": board.created_at,
    }


def task_view(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "boardId": task.board_id,
        "assignees": list(task.assignees),
        "createdAt": task.created_at,
        "startDate": task.start_date,
        "dueDate": task.due_date,
        "tags": list(task.tags),
    }


def task_status_view(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "boardId": task.board_id,
        "title": task.title,
        "createdAt": task.created_at,
    }


def task_assignee_view(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "boardId": task.board_id,
        "title": task.title,
        "status": task.status,
    }
