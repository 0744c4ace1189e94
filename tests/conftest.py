"""Shared fakes for the test suite."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from devicegroupctl.errors import DirectoryError
from devicegroupctl.models import DeviceRecord, GroupCandidate


class FakeDirectoryClient:
    """In-memory stand-in for :class:`devicegroupctl.providers.GraphClient`.

    Query results are keyed by the exact OData filter string so tests also
    pin down the filters the components build.
    """

    def __init__(
        self,
        *,
        managed_devices: dict[str, list[dict[str, Any]]] | None = None,
        managed_by_id: dict[str, dict[str, Any]] | None = None,
        devices: dict[str, list[dict[str, Any]]] | None = None,
        groups: dict[str, list[dict[str, Any]]] | None = None,
        errors: dict[str, DirectoryError] | None = None,
    ) -> None:
        """Initialise the fake with canned results."""
        self.managed_devices = managed_devices or {}
        self.managed_by_id = managed_by_id or {}
        self.devices = devices or {}
        self.groups = groups or {}
        self.errors = errors or {}
        self.calls: list[tuple[str, str]] = []
        self.added: list[tuple[str, str]] = []

    def _check(self, method: str, argument: str) -> None:
        self.calls.append((method, argument))
        error = self.errors.get(method)
        if error is not None:
            raise error

    def list_managed_devices(self, odata_filter: str) -> list[dict[str, Any]]:
        self._check("list_managed_devices", odata_filter)
        return list(self.managed_devices.get(odata_filter, []))

    def get_managed_device(self, device_id: str) -> dict[str, Any] | None:
        self._check("get_managed_device", device_id)
        return self.managed_by_id.get(device_id)

    def list_devices(self, odata_filter: str) -> list[dict[str, Any]]:
        self._check("list_devices", odata_filter)
        return list(self.devices.get(odata_filter, []))

    def list_groups(self, odata_filter: str) -> list[dict[str, Any]]:
        self._check("list_groups", odata_filter)
        return list(self.groups.get(odata_filter, []))

    def add_group_member(self, group_id: str, directory_object_id: str) -> None:
        self._check("add_group_member", f"{group_id}:{directory_object_id}")
        self.added.append((group_id, directory_object_id))

    def methods_called(self) -> list[str]:
        return [method for method, _ in self.calls]


class ScriptedIO:
    """Interactive I/O double that replays canned answers and records output."""

    def __init__(self, answers: Sequence[str] = ()) -> None:
        """Queue *answers* for successive prompts."""
        self.answers = list(answers)
        self.prompts: list[str] = []
        self.messages: list[str] = []
        self.device_tables: list[list[DeviceRecord]] = []
        self.group_tables: list[list[GroupCandidate]] = []

    def ask(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {prompt!r}")
        return self.answers.pop(0)

    def info(self, message: str) -> None:
        self.messages.append(message)

    def show_devices(self, devices: Sequence[DeviceRecord]) -> None:
        self.device_tables.append(list(devices))

    def show_groups(self, groups: Sequence[GroupCandidate]) -> None:
        self.group_tables.append(list(groups))


def managed_device(
    device_id: str,
    *,
    name: str = "LAPTOP-001",
    owner: str = "alice@example.com",
    azure_ad_device_id: str = "aad-0001",
    manufacturer: str = "Contoso",
) -> dict[str, Any]:
    """Return a Graph ``managedDevice`` payload."""
    return {
        "id": device_id,
        "managedDeviceName": f"{owner}_Windows_{name}",
        "deviceName": name,
        "manufacturer": manufacturer,
        "azureADDeviceId": azure_ad_device_id,
        "userPrincipalName": owner,
        "userId": "user-" + owner.split("@")[0],
    }


def directory_group(
    group_id: str,
    *,
    name: str = "Secure-Laptops",
    security: bool = True,
    mail: bool = False,
    group_types: Sequence[str] = (),
) -> dict[str, Any]:
    """Return a Graph ``group`` payload."""
    return {
        "id": group_id,
        "displayName": name,
        "description": f"{name} ({group_id})",
        "groupTypes": list(group_types),
        "mailEnabled": mail,
        "securityEnabled": security,
    }
