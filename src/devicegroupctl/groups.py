"""Eligible target group lookup."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import GroupCandidate, GroupLookup
from .providers.graph import DirectoryClient, escape_odata_literal

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class GroupEligibilityFilter:
    """Find groups by exact display name and keep those that can take a device.

    Eligibility (security-enabled, not mail-enabled, no dynamic membership)
    is evaluated locally on the fetched records; server-side filters on
    these flags are not consistently supported.
    """

    client: DirectoryClient

    def find_eligible(self, display_name: str) -> GroupLookup:
        """Return the raw matches for *display_name* and their eligible subset."""
        name = display_name.strip()
        odata_filter = f"displayName eq '{escape_odata_literal(name)}'"
        matches = tuple(
            GroupCandidate.from_graph(item) for item in self.client.list_groups(odata_filter)
        )
        eligible = tuple(group for group in matches if group.is_eligible)
        for group in matches:
            if not group.is_eligible:
                LOGGER.debug(
                    "Group %s (%s) rejected: %s",
                    group.display_name,
                    group.id,
                    ", ".join(group.ineligibility_reasons()),
                )
        return GroupLookup(display_name=name, matches=matches, eligible=eligible)


__all__ = ["GroupEligibilityFilter"]
