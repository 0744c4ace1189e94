"""Inventory-to-identity device identifier translation."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import DirectoryError
from .models import IdentityDeviceObject, TranslationOutcome
from .providers.graph import DirectoryClient, escape_odata_literal

LOGGER = logging.getLogger(__name__)

# Intune reports this value for devices that never joined the identity directory.
UNJOINED_DEVICE_ID = "00000000-0000-0000-0000-000000000000"


@dataclass(slots=True)
class IdentifierTranslator:
    """Map a cross-directory device id to the identity directory's object id."""

    client: DirectoryClient

    def translate(self, device_id: str) -> TranslationOutcome:
        """Look up the identity device object whose ``deviceId`` equals *device_id*.

        Query failures are returned as an ``ERROR`` outcome instead of being
        raised so callers can tell them apart from a plain miss.
        """
        normalized = (device_id or "").strip()
        if not normalized or normalized == UNJOINED_DEVICE_ID:
            return TranslationOutcome.not_found(normalized)

        odata_filter = f"deviceId eq '{escape_odata_literal(normalized)}'"
        try:
            payloads = self.client.list_devices(odata_filter)
        except DirectoryError as exc:
            LOGGER.debug("Translation of %s failed: %s", normalized, exc.describe())
            return TranslationOutcome.failed(normalized, exc.describe())

        if not payloads:
            return TranslationOutcome.not_found(normalized)
        if len(payloads) > 1:
            LOGGER.warning(
                "%d identity objects share deviceId %s; using the first.",
                len(payloads),
                normalized,
            )
        return TranslationOutcome.found(normalized, IdentityDeviceObject.from_graph(payloads[0]))


__all__ = ["UNJOINED_DEVICE_ID", "IdentifierTranslator"]
