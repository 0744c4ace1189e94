"""Typer-powered command line interface for ``devicegroupctl``.

The ``add`` command resolves an Intune managed device, translates it to its
Entra ID device object, picks an eligible static security group and adds the
device to it. ``device find``, ``group check`` and ``config show`` expose the
read-only halves of that workflow on their own.
"""
from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import AppConfig, ConfigError, GraphConfig, load_config
from .console import RichConsoleIO, device_table, group_table
from .coordinator import SelectionCoordinator, WorkflowResult
from .errors import DependencyError, DirectoryError, SelectorError
from .exit_codes import ExitCode
from .groups import GroupEligibilityFilter
from .logging import OperationScope, StructuredLogger
from .membership import MembershipMutator
from .models import DeviceSelector, GroupLookupStatus
from .providers import DirectoryClient, GraphSession
from .resolver import DeviceResolver
from .translator import IdentifierTranslator

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to devicegroupctl's YAML config file.",
)
OWNER_OPTION = typer.Option(
    None,
    "--owner",
    help="Find devices whose primary user principal name equals this value.",
)
NAME_OPTION = typer.Option(
    None,
    "--name",
    help="Find devices whose device name contains this value.",
)
DEVICE_ID_OPTION = typer.Option(
    None,
    "--device-id",
    help="Find the managed device with this Intune identifier.",
)
GROUP_OPTION = typer.Option(
    None,
    "--group",
    help="Display name of the target group (prompted when omitted).",
)
YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Skip the final confirmation prompt.",
)
DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Resolve everything and show the change without applying it.",
)
MAX_ATTEMPTS_OPTION = typer.Option(
    None,
    "--max-attempts",
    min=1,
    help="Give up after this many invalid answers to the same prompt (default: unlimited).",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Add Intune managed devices to Entra ID security groups.

        Devices can be located by owner, by name substring or by Intune id;
        only static, security-enabled, non-mail-enabled groups are accepted
        as targets.
        """
    ).strip(),
)
device_app = typer.Typer(help="Look up Intune managed devices.")
group_app = typer.Typer(help="Inspect Entra ID groups.")
config_app = typer.Typer(help="Inspect the resolved configuration.")

app.add_typer(device_app, name="device")
app.add_typer(group_app, name="group")
app.add_typer(config_app, name="config")

SessionFactory = Callable[[GraphConfig], GraphSession]


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    session_factory: SessionFactory


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    verbose: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=ExitCode.FAILED) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        session_factory=GraphSession,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the devicegroupctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log directory requests to stderr.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"devicegroupctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, verbose)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.FAILED,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


@contextmanager
def _directory_session(runtime: RuntimeContext, op: OperationScope) -> Iterator[DirectoryClient]:
    """Yield a connected client and always close the session afterwards."""
    session = runtime.session_factory(runtime.config.graph)
    try:
        try:
            client = session.connect()
        except DependencyError as exc:
            _command_error(op, f"Dependency error: {exc}")
        yield client
    finally:
        session.close()


def _selector_from_options(
    op: OperationScope,
    owner: str | None,
    name: str | None,
    device_id: str | None,
) -> DeviceSelector | None:
    try:
        return DeviceSelector.from_options(owner=owner, name=name, device_id=device_id)
    except SelectorError as exc:
        _command_error(op, str(exc))


def _report_result(op: OperationScope, result: WorkflowResult) -> None:
    context = result.to_dict()
    if result.failure is not None:
        _command_error(op, result.failure.describe(), rc=result.exit_code)
    if result.dry_run:
        console.print("[yellow]Dry run[/yellow]: no membership change was made.")
        op.success("Dry run complete.", changed=0, context=context)
        return
    request = result.request
    if request is not None:
        console.print(
            f"[green]Added[/green] device {request.device_name} ({request.device_object_id}) "
            f"to group {request.group_name} ({request.group_id})."
        )
    op.success("Device added to group.", changed=1, context=context)


@app.command()
def add(
    ctx: typer.Context,
    owner: str | None = OWNER_OPTION,
    name: str | None = NAME_OPTION,
    device_id: str | None = DEVICE_ID_OPTION,
    group: str | None = GROUP_OPTION,
    yes: bool = YES_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    max_attempts: int | None = MAX_ATTEMPTS_OPTION,
) -> None:
    """Add a managed device to an eligible Entra ID group."""
    runtime = _get_runtime(ctx)
    args = {
        "owner": owner,
        "name": name,
        "device_id": device_id,
        "group": group,
        "yes": yes,
        "dry_run": dry_run,
    }
    with runtime.logger.operation("add", args=args, target={"kind": "membership"}) as op:
        selector = _selector_from_options(op, owner, name, device_id)
        with _directory_session(runtime, op) as client:
            coordinator = SelectionCoordinator(
                resolver=DeviceResolver(client),
                translator=IdentifierTranslator(client),
                groups=GroupEligibilityFilter(client),
                mutator=MembershipMutator(client),
                io=RichConsoleIO(console),
                selector=selector,
                group_name=group,
                assume_yes=yes,
                dry_run=dry_run,
                max_attempts=max_attempts,
            )
            result = coordinator.run()
        _report_result(op, result)


@device_app.command("find")
def device_find(
    ctx: typer.Context,
    owner: str | None = OWNER_OPTION,
    name: str | None = NAME_OPTION,
    device_id: str | None = DEVICE_ID_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """List managed devices matching exactly one lookup option."""
    runtime = _get_runtime(ctx)
    args = {"owner": owner, "name": name, "device_id": device_id}
    with runtime.logger.operation("device find", args=args, target={"kind": "device"}) as op:
        selector = _selector_from_options(op, owner, name, device_id)
        if selector is None:
            _command_error(op, "Supply one of --owner, --name or --device-id.")
        with _directory_session(runtime, op) as client:
            try:
                devices = DeviceResolver(client).resolve(selector)
            except DirectoryError as exc:
                _command_error(op, f"Device lookup failed: {exc.describe()}")

        if json_output:
            typer.echo(json.dumps([device.to_dict() for device in devices], indent=2))
        elif devices:
            console.print(device_table(devices))
        if not devices:
            _command_error(
                op,
                f"No managed devices found for {selector.mode.value} '{selector.criterion}'.",
            )
        op.success(
            f"Found {len(devices)} device(s).",
            context={"devices": [device.id for device in devices]},
        )


@group_app.command("check")
def group_check(
    ctx: typer.Context,
    display_name: str = typer.Argument(..., help="Exact display name of the group."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show groups with this name and whether each can receive devices."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "group check",
        args={"display_name": display_name},
        target={"kind": "group", "name": display_name},
    ) as op:
        with _directory_session(runtime, op) as client:
            try:
                lookup = GroupEligibilityFilter(client).find_eligible(display_name)
            except DirectoryError as exc:
                _command_error(op, f"Group lookup failed: {exc.describe()}")

        if json_output:
            payload = [
                {
                    "id": group.id,
                    "display_name": group.display_name,
                    "eligible": group.is_eligible,
                    "reasons": group.ineligibility_reasons(),
                }
                for group in lookup.matches
            ]
            typer.echo(json.dumps(payload, indent=2))
        elif lookup.matches:
            console.print(group_table(lookup.matches, show_eligibility=True))

        if lookup.status is GroupLookupStatus.NO_MATCH:
            _command_error(op, f"No group named '{lookup.display_name}' exists.")
        if lookup.status is GroupLookupStatus.NONE_ELIGIBLE:
            _command_error(op, f"No eligible group named '{lookup.display_name}'.")
        op.success(
            f"{len(lookup.eligible)} eligible group(s).",
            context={"eligible": [group.id for group in lookup.eligible]},
        )


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Print the resolved configuration (client secret redacted)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("config show", target={"kind": "config"}) as op:
        payload = runtime.config.to_dict()
        if json_output:
            typer.echo(json.dumps(payload, indent=2))
        else:
            console.print(f"Config file: {runtime.config.config_file}")
            console.print(f"Logs dir: {runtime.config.logs_dir}")
            for key, value in runtime.config.graph.to_dict().items():
                console.print(f"graph.{key}: {value if value is not None else '-'}")
        op.success("Displayed configuration.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
