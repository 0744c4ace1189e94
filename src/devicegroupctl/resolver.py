"""Inventory device lookup by owner, name substring or identifier."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import DeviceRecord, DeviceSelector, SelectionMode
from .providers.graph import DirectoryClient, escape_odata_literal

LOGGER = logging.getLogger(__name__)


def build_device_filter(selector: DeviceSelector) -> str:
    """Return the OData filter used for *selector*.

    Only owner and name strategies are filter-based; identifier lookups
    address the device directly.
    """
    literal = escape_odata_literal(selector.criterion)
    if selector.mode is SelectionMode.OWNER:
        return f"userPrincipalName eq '{literal}'"
    if selector.mode is SelectionMode.NAME:
        return f"contains(deviceName,'{literal}')"
    raise ValueError(f"Selection mode {selector.mode.value!r} does not use a filter.")


@dataclass(slots=True)
class DeviceResolver:
    """Resolve inventory device records for a :class:`DeviceSelector`."""

    client: DirectoryClient

    def resolve(self, selector: DeviceSelector) -> list[DeviceRecord]:
        """Return the candidate records; an empty list means nothing matched.

        :class:`~devicegroupctl.errors.DirectoryError` from the client
        propagates unchanged.
        """
        if selector.mode is SelectionMode.IDENTIFIER:
            payload = self.client.get_managed_device(selector.criterion)
            records = [DeviceRecord.from_graph(payload)] if payload else []
        else:
            payloads = self.client.list_managed_devices(build_device_filter(selector))
            records = [DeviceRecord.from_graph(item) for item in payloads]
        LOGGER.debug(
            "Resolved %d device(s) by %s=%r",
            len(records),
            selector.mode.value,
            selector.criterion,
        )
        return records


__all__ = ["DeviceResolver", "build_device_filter"]
