"""Data models shared by the resolution and mutation workflow."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .errors import SelectorError

DYNAMIC_MEMBERSHIP = "DynamicMembership"


class SelectionMode(str, Enum):
    """Strategy used to locate inventory devices."""

    OWNER = "owner"
    NAME = "name"
    IDENTIFIER = "identifier"

    @property
    def label(self) -> str:
        """Return the menu label for the strategy."""
        return _MODE_LABELS[self]


_MODE_LABELS = {
    SelectionMode.OWNER: "Owner user principal name",
    SelectionMode.NAME: "Device name (substring)",
    SelectionMode.IDENTIFIER: "Managed device identifier",
}


@dataclass(slots=True, frozen=True)
class DeviceSelector:
    """Exactly one device selection strategy together with its criterion."""

    mode: SelectionMode
    criterion: str

    def __post_init__(self) -> None:
        if not self.criterion or not self.criterion.strip():
            raise SelectorError(f"A {self.mode.value} criterion cannot be blank.")

    @classmethod
    def from_options(
        cls,
        *,
        owner: str | None = None,
        name: str | None = None,
        device_id: str | None = None,
    ) -> DeviceSelector | None:
        """Build a selector from mutually exclusive CLI options.

        Returns ``None`` when no option was supplied so the caller can ask
        interactively.
        """
        supplied = [
            (mode, value)
            for mode, value in (
                (SelectionMode.OWNER, owner),
                (SelectionMode.NAME, name),
                (SelectionMode.IDENTIFIER, device_id),
            )
            if value is not None
        ]
        if not supplied:
            return None
        if len(supplied) > 1:
            joined = ", ".join(mode.value for mode, _ in supplied)
            raise SelectorError(f"Only one device selection option may be supplied (got {joined}).")
        mode, value = supplied[0]
        return cls(mode=mode, criterion=value.strip())


@dataclass(slots=True, frozen=True)
class DeviceRecord:
    """Inventory-side view of a managed device."""

    id: str
    managed_device_name: str = ""
    device_name: str = ""
    manufacturer: str = ""
    azure_ad_device_id: str = ""
    user_principal_name: str = ""
    user_id: str = ""

    @classmethod
    def from_graph(cls, payload: Mapping[str, object]) -> DeviceRecord:
        """Build a record from a ``managedDevice`` payload."""
        return cls(
            id=_text(payload.get("id")),
            managed_device_name=_text(payload.get("managedDeviceName")),
            device_name=_text(payload.get("deviceName")),
            manufacturer=_text(payload.get("manufacturer")),
            azure_ad_device_id=_text(payload.get("azureADDeviceId")),
            user_principal_name=_text(payload.get("userPrincipalName")),
            user_id=_text(payload.get("userId")),
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "managed_device_name": self.managed_device_name,
            "device_name": self.device_name,
            "manufacturer": self.manufacturer,
            "azure_ad_device_id": self.azure_ad_device_id,
            "user_principal_name": self.user_principal_name,
            "user_id": self.user_id,
        }


@dataclass(slots=True, frozen=True)
class IdentityDeviceObject:
    """Identity-directory object representing a physical device."""

    id: str
    device_id: str
    display_name: str = ""

    @classmethod
    def from_graph(cls, payload: Mapping[str, object]) -> IdentityDeviceObject:
        """Build the object from a ``device`` payload."""
        return cls(
            id=_text(payload.get("id")),
            device_id=_text(payload.get("deviceId")),
            display_name=_text(payload.get("displayName")),
        )


@dataclass(slots=True, frozen=True)
class GroupCandidate:
    """Identity-directory group projection used for eligibility checks."""

    id: str
    display_name: str
    description: str = ""
    group_types: tuple[str, ...] = ()
    mail_enabled: bool = False
    security_enabled: bool = False

    @classmethod
    def from_graph(cls, payload: Mapping[str, object]) -> GroupCandidate:
        """Build a candidate from a ``group`` payload."""
        raw_types = payload.get("groupTypes")
        group_types = (
            tuple(str(item) for item in raw_types) if isinstance(raw_types, list) else ()
        )
        return cls(
            id=_text(payload.get("id")),
            display_name=_text(payload.get("displayName")),
            description=_text(payload.get("description")),
            group_types=group_types,
            mail_enabled=payload.get("mailEnabled") is True,
            security_enabled=payload.get("securityEnabled") is True,
        )

    @property
    def is_dynamic(self) -> bool:
        """Return ``True`` when membership is rule-driven."""
        return any(item.lower() == DYNAMIC_MEMBERSHIP.lower() for item in self.group_types)

    def ineligibility_reasons(self) -> list[str]:
        """Return the reasons this group cannot receive a device member."""
        reasons: list[str] = []
        if not self.security_enabled:
            reasons.append("not security-enabled")
        if self.mail_enabled:
            reasons.append("mail-enabled")
        if self.is_dynamic:
            reasons.append("dynamic membership")
        return reasons

    @property
    def is_eligible(self) -> bool:
        """Return ``True`` for static, security-enabled, non-mail groups."""
        return not self.ineligibility_reasons()


@dataclass(slots=True, frozen=True)
class MembershipRequest:
    """One device object to add to one group."""

    group_id: str
    device_object_id: str
    group_name: str = ""
    device_name: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "group_id": self.group_id,
            "group_name": self.group_name,
            "device_object_id": self.device_object_id,
            "device_name": self.device_name,
        }


class TranslationStatus(str, Enum):
    """Outcome of translating an inventory device to an identity object."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class TranslationOutcome:
    """Three-way result of an identifier translation."""

    status: TranslationStatus
    device_id: str
    device_object: IdentityDeviceObject | None = None
    error: str | None = None

    @property
    def object_id(self) -> str | None:
        """Return the identity object id when the lookup succeeded."""
        return self.device_object.id if self.device_object is not None else None

    @classmethod
    def found(cls, device_id: str, device_object: IdentityDeviceObject) -> TranslationOutcome:
        return cls(TranslationStatus.FOUND, device_id, device_object=device_object)

    @classmethod
    def not_found(cls, device_id: str) -> TranslationOutcome:
        return cls(TranslationStatus.NOT_FOUND, device_id)

    @classmethod
    def failed(cls, device_id: str, error: str) -> TranslationOutcome:
        return cls(TranslationStatus.ERROR, device_id, error=error)


class GroupLookupStatus(str, Enum):
    """Outcome of an eligible-group lookup."""

    NO_MATCH = "no_match"
    NONE_ELIGIBLE = "none_eligible"
    ELIGIBLE = "eligible"


@dataclass(slots=True, frozen=True)
class GroupLookup:
    """Raw name matches and their eligible subset."""

    display_name: str
    matches: tuple[GroupCandidate, ...] = ()
    eligible: tuple[GroupCandidate, ...] = ()

    @property
    def status(self) -> GroupLookupStatus:
        if not self.matches:
            return GroupLookupStatus.NO_MATCH
        if not self.eligible:
            return GroupLookupStatus.NONE_ELIGIBLE
        return GroupLookupStatus.ELIGIBLE

    @property
    def rejected(self) -> tuple[GroupCandidate, ...]:
        """Return matches that failed the eligibility rules."""
        eligible_ids = {group.id for group in self.eligible}
        return tuple(group for group in self.matches if group.id not in eligible_ids)


@dataclass(slots=True, frozen=True)
class MutationResult:
    """Outcome of a membership add."""

    request: MembershipRequest
    succeeded: bool
    error: str | None = None


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value)


__all__ = [
    "DeviceRecord",
    "DeviceSelector",
    "GroupCandidate",
    "GroupLookup",
    "GroupLookupStatus",
    "IdentityDeviceObject",
    "MembershipRequest",
    "MutationResult",
    "SelectionMode",
    "TranslationOutcome",
    "TranslationStatus",
]
