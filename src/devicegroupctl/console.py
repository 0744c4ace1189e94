"""Rich-backed interactive I/O for the selection workflow."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import typer
from rich.console import Console
from rich.table import Table

from .models import DeviceRecord, GroupCandidate


def device_table(devices: Sequence[DeviceRecord], *, title: str = "Managed devices") -> Table:
    """Return a table describing *devices*."""
    table = Table(title=title)
    table.add_column("Managed device id", overflow="fold")
    table.add_column("Device name")
    table.add_column("Managed name")
    table.add_column("Manufacturer")
    table.add_column("Owner")
    table.add_column("Entra device id", overflow="fold")
    for device in devices:
        table.add_row(
            device.id,
            device.device_name or "-",
            device.managed_device_name or "-",
            device.manufacturer or "-",
            device.user_principal_name or "-",
            device.azure_ad_device_id or "-",
        )
    return table


def group_table(
    groups: Sequence[GroupCandidate],
    *,
    title: str = "Groups",
    show_eligibility: bool = False,
) -> Table:
    """Return a table describing *groups*."""
    table = Table(title=title)
    table.add_column("Group id", overflow="fold")
    table.add_column("Display name")
    table.add_column("Description")
    table.add_column("Security")
    table.add_column("Mail")
    table.add_column("Types")
    if show_eligibility:
        table.add_column("Eligible")
    for group in groups:
        row = [
            group.id,
            group.display_name,
            group.description or "-",
            "yes" if group.security_enabled else "no",
            "yes" if group.mail_enabled else "no",
            ", ".join(group.group_types) or "-",
        ]
        if show_eligibility:
            reasons = group.ineligibility_reasons()
            row.append("[green]yes[/green]" if not reasons else f"[red]no[/red] ({', '.join(reasons)})")
        table.add_row(*row)
    return table


@dataclass(slots=True)
class RichConsoleIO:
    """Prompt through Typer and render candidates with Rich tables."""

    console: Console = field(default_factory=Console)

    def ask(self, prompt: str) -> str:
        """Return the raw answer; blank answers are accepted and validated upstream."""
        return str(typer.prompt(prompt, default="", show_default=False))

    def info(self, message: str) -> None:
        self.console.print(message, highlight=False)

    def show_devices(self, devices: Sequence[DeviceRecord]) -> None:
        self.console.print(device_table(devices))

    def show_groups(self, groups: Sequence[GroupCandidate]) -> None:
        self.console.print(group_table(groups, title="Eligible groups"))


__all__ = ["RichConsoleIO", "device_table", "group_table"]
