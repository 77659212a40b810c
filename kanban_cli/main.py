from __future__ import annotations

import argparse
import sys
from typing import Any

import click
import typer
from dotenv import load_dotenv
from rich.console import Console

from . import __version__
from .cli_shared import KANBAN_API_ENDPOINT
from .cli_shared import GlobalOpts
from .cli_shared import OpError
from .cli_shared import UsageError
from .cli_shared import _eprint
from .cli_shared import _env_or_none
from .commands import cmd_boards_create
from .commands import cmd_boards_delete
from .commands import cmd_boards_list
from .commands import cmd_tasks_by_assignee
from .commands import cmd_tasks_by_status
from .commands import cmd_tasks_create
from .commands import cmd_tasks_delete
from .commands import cmd_tasks_list
from .commands import cmd_tasks_status

_ERROR_CONSOLE = Console(stderr=True)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {msg}")


def _render_usage_error_with_help(*, message: str, ctx: click.Context | None = None) -> None:
    _rich_error(message)
    if isinstance(ctx, click.Context):
        help_text = str(ctx.get_help() or "").strip()
        if help_text:
            _eprint("")
            _eprint(help_text)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"kanban {__version__}")
        raise typer.Exit(code=0)


app = typer.Typer(
    name="kanban",
    help="Kanban board client (default: human-readable output; use --json for raw API responses)",
    no_args_is_help=True,
    add_completion=False,
)
boards_app = typer.Typer(help="Board helpers", no_args_is_help=True)
tasks_app = typer.Typer(help="Task helpers", no_args_is_help=True)

app.add_typer(boards_app, name="boards")
app.add_typer(tasks_app, name="tasks")


@app.callback()
def app_callback(
    ctx: typer.Context,
    endpoint: str | None = typer.Option(
        None,
        "--endpoint",
        help=f"Kanban API base URL (env: {KANBAN_API_ENDPOINT})",
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit raw JSON API responses"),
    plain_json: bool = typer.Option(False, "--plain-json", help="Emit compact JSON output"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    del version
    ctx.obj = {
        "g": GlobalOpts(
            endpoint=(endpoint or _env_or_none(KANBAN_API_ENDPOINT) or "").strip(),
            pretty=not plain_json,
            json_output=json_output,
        )
    }


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    root = ctx.find_root()
    obj = root.obj if isinstance(root.obj, dict) else {}
    g = obj.get("g")
    if isinstance(g, GlobalOpts):
        return g
    return GlobalOpts(endpoint=_env_or_none(KANBAN_API_ENDPOINT) or "", pretty=True)


def _invoke(ctx: typer.Context, func: Any, **kwargs: Any) -> None:
    g = _ctx_global(ctx)
    args = argparse.Namespace(**kwargs)
    try:
        code = int(func(args, g))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)
    except OpError as e:
        _rich_error(str(e))
        raise typer.Exit(code=1)

    if code:
        raise typer.Exit(code=code)


@boards_app.command("list", help="List all boards.")
def boards_list(ctx: typer.Context) -> None:
    _invoke(ctx, cmd_boards_list)


@boards_app.command("create", help="Create a board.")
def boards_create(
    ctx: typer.Context,
    title: str = typer.Option(..., "--title", help="Board title"),
    description: str | None = typer.Option(None, "--description", help="Optional description"),
) -> None:
    _invoke(ctx, cmd_boards_create, title=title, description=description)


@boards_app.command("delete", help="Delete a board and every task on it.")
def boards_delete(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
) -> None:
    _invoke(ctx, cmd_boards_delete, board_id=board_id)


@tasks_app.command("list", help="List the tasks on a board.")
def tasks_list(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
) -> None:
    _invoke(ctx, cmd_tasks_list, board_id=board_id)


@tasks_app.command("create", help="Create a task on a board.")
def tasks_create(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
    title: str = typer.Option(..., "--title", help="Task title"),
    description: str | None = typer.Option(None, "--description", help="Optional description"),
    status: str | None = typer.Option(None, "--status", help="TODO|IN_PROGRESS|DONE (default TODO)"),
    assignees: list[str] | None = typer.Option(None, "--assignee", help="Assignee ID (repeatable; first is primary)"),
    tags: list[str] | None = typer.Option(None, "--tag", help="Tag (repeatable)"),
    start_date: str | None = typer.Option(None, "--start-date", help="YYYY-MM-DD"),
    due_date: str | None = typer.Option(None, "--due-date", help="YYYY-MM-DD"),
) -> None:
    _invoke(
        ctx,
        cmd_tasks_create,
        board_id=board_id,
        title=title,
        description=description,
        status=status,
        assignees=assignees or [],
        tags=tags or [],
        start_date=start_date,
        due_date=due_date,
    )


@tasks_app.command("status", help="Move a task to another column.")
def tasks_status(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
    task_id: str = typer.Argument(..., help="Task ID"),
    status: str = typer.Argument(..., help="TODO|IN_PROGRESS|DONE"),
) -> None:
    _invoke(ctx, cmd_tasks_status, board_id=board_id, task_id=task_id, status=status)


@tasks_app.command("delete", help="Delete a task (no error if it is already gone).")
def tasks_delete(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
    task_id: str = typer.Argument(..., help="Task ID"),
) -> None:
    _invoke(ctx, cmd_tasks_delete, board_id=board_id, task_id=task_id)


@tasks_app.command("by-status", help="List tasks across all boards with a status, oldest first.")
def tasks_by_status(
    ctx: typer.Context,
    status: str = typer.Argument(..., help="TODO|IN_PROGRESS|DONE"),
) -> None:
    _invoke(ctx, cmd_tasks_by_status, status=status)


@tasks_app.command("by-assignee", help="List tasks across all boards whose primary assignee matches.")
def tasks_by_assignee(
    ctx: typer.Context,
    assignee_id: str = typer.Argument(..., help="Assignee ID (use 'unassigned' for tasks with none)"),
) -> None:
    _invoke(ctx, cmd_tasks_by_assignee, assignee_id=assignee_id)


def _bootstrap_env() -> None:
    # Pick up KANBAN_API_ENDPOINT from a local .env without overriding the shell.
    load_dotenv(override=False)


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    _bootstrap_env()
    try:
        result = app(args=argv, prog_name="kanban", standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        if isinstance(e, click.UsageError):
            _render_usage_error_with_help(message=e.format_message(), ctx=getattr(e, "ctx", None))
        else:
            _rich_error(e.format_message())
        return int(e.exit_code)


if __name__ == "__main__":
    raise SystemExit(main())
