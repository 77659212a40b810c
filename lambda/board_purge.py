"""Cascading delete of a board partition.

Every item under ``BOARD#<id>`` (the root and all tasks) is enumerated with a
single-partition query, then removed with ``BatchWriteItem`` in batches of at
most 25 keys. Keys the store hands back as ``UnprocessedItems`` are resent on
their own, up to a fixed number of sends per batch. A batch that still has
keys after the last send is marked exhausted and its keys are reported, not
raised. The board root is always deleted by exact key at the end.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from boto3.dynamodb.conditions import Key

from kanban_items import board_key
from kanban_items import board_partition_key

BATCH_WRITE_LIMIT = 25
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_MS = 50

BATCH_PENDING = "pending"
BATCH_RETRYING = "retrying"
BATCH_DONE = "done"
BATCH_EXHAUSTED = "exhausted"


@dataclass
class BatchOutcome:
    keys: list[dict[str, Any]]
    state: str = BATCH_PENDING
    attempts: int = 0
    residual_keys: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class PurgeReport:
    board_id: str
    enumerated: int = 0
    batches: list[BatchOutcome] = field(default_factory=list)
    root_deleted: bool = False

    @property
    def residual_keys(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for batch in self.batches:
            out.extend(batch.residual_keys)
        return out

    @property
    def complete(self) -> bool:
        return self.root_deleted and not self.residual_keys

    def summary(self) -> dict[str, Any]:
        return {
            "enumerated": self.enumerated,
            "batches": len(self.batches),
            "attempts": sum(b.attempts for b in self.batches),
            "exhaustedBatches": sum(1 for b in self.batches if b.state == BATCH_EXHAUSTED),
            "residual": len(self.residual_keys),
        }


def chunk_keys(keys: list[dict[str, Any]], size: int = BATCH_WRITE_LIMIT) -> list[list[dict[str, Any]]]:
    if size < 1 or size > BATCH_WRITE_LIMIT:
        raise ValueError(f"batch size must be between 1 and {BATCH_WRITE_LIMIT}")
    return [keys[i : i + size] for i in range(0, len(keys), size)]


def partition_keys(table: Any, board_id: str) -> list[dict[str, Any]]:
    keys: list[dict[str, Any]] = []
    start_key: dict[str, Any] | None = None
    while True:
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": Key("PK").eq(board_partition_key(board_id)),
            "ProjectionExpression": "PK, SK",
        }
        if start_key:
            kwargs["ExclusiveStartKey"] = start_key
        page = table.query(**kwargs)
        for item in page.get("Items", []) or []:
            if not isinstance(item, dict) or "PK" not in item or "SK" not in item:
                continue
            keys.append({"PK": item["PK"], "SK": item["SK"]})
        start_key = page.get("LastEvaluatedKey")
        if not start_key:
            return keys


def _unprocessed_keys(resp: dict[str, Any], table_name: str) -> list[dict[str, Any]]:
    pending = (resp.get("UnprocessedItems") or {}).get(table_name) or []
    out: list[dict[str, Any]] = []
    for req in pending:
        key = ((req or {}).get("DeleteRequest") or {}).get("Key")
        if key:
            out.append(key)
    return out


def delete_batch(
    ddb: Any,
    table_name: str,
    keys: list[dict[str, Any]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_ms: int = DEFAULT_BACKOFF_MS,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchOutcome:
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    outcome = BatchOutcome(keys=list(keys))
    pending = list(keys)
    while pending:
        if outcome.attempts >= max_attempts:
            outcome.state = BATCH_EXHAUSTED
            outcome.residual_keys = pending
            return outcome
        if outcome.attempts:
            outcome.state = BATCH_RETRYING
            if backoff_ms > 0:
                sleep(backoff_ms * (2 ** (outcome.attempts - 1)) / 1000.0)
        resp = ddb.batch_write_item(
            RequestItems={table_name: [{"DeleteRequest": {"Key": k}} for k in pending]}
        )
        outcome.attempts += 1
        pending = _unprocessed_keys(resp or {}, table_name)

    outcome.state = BATCH_DONE
    return outcome


def purge_board(
    ddb: Any,
    table_name: str,
    board_id: str,
    *,
    batch_size: int = BATCH_WRITE_LIMIT,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_ms: int = DEFAULT_BACKOFF_MS,
    sleep: Callable[[float], None] = time.sleep,
) -> PurgeReport:
    table = ddb.Table(table_name)
    report = PurgeReport(board_id=board_id)

    keys = partition_keys(table, board_id)
    report.enumerated = len(keys)

    # One batch in flight at a time.
    for chunk in chunk_keys(keys, batch_size):
        report.batches.append(
            delete_batch(
                ddb,
                table_name,
                chunk,
                max_attempts=max_attempts,
                backoff_ms=backoff_ms,
                sleep=sleep,
            )
        )

    # Root goes by exact key whether or not the query returned it.
    table.delete_item(Key=board_key(board_id))
    report.root_deleted = True
    return report
