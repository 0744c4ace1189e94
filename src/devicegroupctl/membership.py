"""Single membership add of a device object into a group."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import DirectoryError
from .models import MembershipRequest, MutationResult
from .providers.graph import DirectoryClient

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class MembershipMutator:
    """Add one directory object to one group.

    The call is made once. A member that is already present is whatever the
    directory reports for it (Graph answers with an error), so it surfaces
    as a failure.
    """

    client: DirectoryClient

    def add_member(self, request: MembershipRequest) -> MutationResult:
        """Perform the add and report the outcome."""
        try:
            self.client.add_group_member(request.group_id, request.device_object_id)
        except DirectoryError as exc:
            LOGGER.debug("Membership add failed: %s", exc.describe())
            return MutationResult(request=request, succeeded=False, error=exc.describe())
        LOGGER.info(
            "Added device object %s to group %s",
            request.device_object_id,
            request.group_id,
        )
        return MutationResult(request=request, succeeded=True)


__all__ = ["MembershipMutator"]
