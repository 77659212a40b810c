import copy
from typing import Any

import pytest
from botocore.exceptions import ClientError

INDEXES = {
    "status-createdAt-index": ("status", "createdAt"),
    "assigneeId-status-index": ("assigneeId", "status"),
}


def _matches(cond: Any, item: dict) -> bool:
    expr = cond.get_expression()
    op = expr["operator"]
    values = expr["values"]
    if op == "AND":
        return all(_matches(v, item) for v in values)
    name = values[0].name
    if name not in item:
        return False
    if op == "=":
        return item[name] == values[1]
    if op == "begins_with":
        return str(item[name]).startswith(values[1])
    raise NotImplementedError(f"fake condition operator: {op}")


def _project(item: dict, projection: str | None) -> dict:
    if not projection:
        return copy.deepcopy(item)
    names = [p.strip() for p in projection.split(",") if p.strip()]
    return {n: copy.deepcopy(item[n]) for n in names if n in item}


class FakeTable:
    def __init__(self, db: "FakeDynamo", name: str):
        self.db = db
        self.name = name

    def put_item(self, *, Item, **_kwargs):
        self.db.items[(Item["PK"], Item["SK"])] = copy.deepcopy(Item)
        return {}

    def get_item(self, *, Key, **_kwargs):
        item = self.db.items.get((Key["PK"], Key["SK"]))
        return {"Item": copy.deepcopy(item)} if item else {}

    def delete_item(self, *, Key, **_kwargs):
        self.db.deletes.append(dict(Key))
        self.db.items.pop((Key["PK"], Key["SK"]), None)
        return {}

    def update_item(self, *, Key, UpdateExpression, ExpressionAttributeNames, ExpressionAttributeValues, **_kwargs):
        assert UpdateExpression.startswith("SET ")
        item = self.db.items.setdefault((Key["PK"], Key["SK"]), dict(Key))
        for part in UpdateExpression[len("SET "):].split(","):
            name, value = (s.strip() for s in part.split("="))
            item[ExpressionAttributeNames.get(name, name)] = ExpressionAttributeValues[value]
        return {}

    def query(self, *, KeyConditionExpression, IndexName=None, ScanIndexForward=True, ProjectionExpression=None, **kwargs):
        self.db.queries.append({"IndexName": IndexName, **kwargs})
        rows = [i for i in self.db.items.values() if _matches(KeyConditionExpression, i)]
        if IndexName:
            hash_attr, range_attr = INDEXES[IndexName]
            rows = [i for i in rows if hash_attr in i and range_attr in i]
            rows.sort(key=lambda i: (i[range_attr], i["PK"], i["SK"]))
        else:
            rows.sort(key=lambda i: (i["PK"], i["SK"]))
        if not ScanIndexForward:
            rows.reverse()
        return self.db._page(rows, kwargs.get("ExclusiveStartKey"), ProjectionExpression)

    def scan(self, *, FilterExpression=None, **kwargs):
        self.db.scans += 1
        rows = sorted(self.db.items.values(), key=lambda i: (i["PK"], i["SK"]))
        start = kwargs.get("ExclusiveStartKey")
        # Scan pages cover the raw table; the filter applies per page.
        page = self.db._page(rows, start, None)
        if FilterExpression is not None:
            page["Items"] = [i for i in page["Items"] if _matches(FilterExpression, i)]
        return page


class FakeDynamo:
    """In-memory stand-in for the boto3 DynamoDB resource, single table."""

    def __init__(self):
        self.items: dict[tuple[str, str], dict] = {}
        self.page_size: int | None = None
        self.unprocessed_plan: list[int] = []
        self.batch_calls: list[list[dict]] = []
        self.deletes: list[dict] = []
        self.queries: list[dict] = []
        self.scans = 0

    def Table(self, name):
        return FakeTable(self, name)

    def _page(self, rows: list[dict], start_key: dict | None, projection: str | None) -> dict:
        if start_key:
            marker = (start_key["PK"], start_key["SK"])
            idx = next(i for i, r in enumerate(rows) if (r["PK"], r["SK"]) == marker)
            rows = rows[idx + 1 :]
        out: dict = {}
        if self.page_size is not None and len(rows) > self.page_size:
            rows = rows[: self.page_size]
            out["LastEvaluatedKey"] = {"PK": rows[-1]["PK"], "SK": rows[-1]["SK"]}
        out["Items"] = [_project(r, projection) for r in rows]
        return out

    def batch_write_item(self, *, RequestItems):
        assert len(RequestItems) == 1
        table_name, requests = next(iter(RequestItems.items()))
        if len(requests) > 25:
            raise ClientError(
                {"Error": {"Code": "ValidationException", "Message": "Too many items requested"}},
                "BatchWriteItem",
            )
        keys = [r["DeleteRequest"]["Key"] for r in requests]
        self.batch_calls.append(keys)

        skip = self.unprocessed_plan.pop(0) if self.unprocessed_plan else 0
        skip = min(skip, len(keys))
        done, left = keys[: len(keys) - skip], keys[len(keys) - skip :]
        for key in done:
            self.items.pop((key["PK"], key["SK"]), None)
        if not left:
            return {"UnprocessedItems": {}}
        return {"UnprocessedItems": {table_name: [{"DeleteRequest": {"Key": k}} for k in left]}}


@pytest.fixture
def fake_ddb() -> FakeDynamo:
    return FakeDynamo()
