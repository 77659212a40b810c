from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from typing import Any


class KanbanCliError(Exception):
    pass


class UsageError(KanbanCliError):
    pass


class OpError(KanbanCliError):
    pass


KANBAN_API_ENDPOINT = "KANBAN_API_ENDPOINT"


def _eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


@dataclass(frozen=True)
class GlobalOpts:
    endpoint: str
    pretty: bool
    json_output: bool = False


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _require_str(val: str | None, name: str, *, hint: str) -> str:
    v = (val or "").strip()
    if not v:
        raise UsageError(f"missing {name} ({hint})")
    return v


def _print_json(obj: Any, *, pretty: bool) -> None:
    if pretty:
        sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")
    else:
        sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True) + "\n")
