"""Interactive state machine linking device resolution to the membership add.

The coordinator walks a fixed sequence of states::

    MODE_SELECT -> DEVICE_QUERY -> DEVICE_DISAMBIGUATE -> IDENTIFIER_TRANSLATE
        -> GROUP_QUERY -> GROUP_DISAMBIGUATE -> CONFIRM -> MUTATE -> DONE

Any state may move to the absorbing ``FAILED`` state. Prompting states that
receive an invalid answer return themselves, so a re-prompt shows up as a
repeated entry in the run history rather than as an exception.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, TypeVar

from .errors import DeviceGroupError, DirectoryError
from .exit_codes import ExitCode
from .groups import GroupEligibilityFilter
from .membership import MembershipMutator
from .models import (
    DeviceRecord,
    DeviceSelector,
    GroupCandidate,
    GroupLookup,
    GroupLookupStatus,
    IdentityDeviceObject,
    MembershipRequest,
    MutationResult,
    SelectionMode,
    TranslationStatus,
)
from .resolver import DeviceResolver
from .translator import IdentifierTranslator

LOGGER = logging.getLogger(__name__)

MODE_MENU: tuple[SelectionMode, ...] = (
    SelectionMode.OWNER,
    SelectionMode.NAME,
    SelectionMode.IDENTIFIER,
)
YES_ANSWERS = {"y", "yes"}
NO_ANSWERS = {"n", "no"}

_CandidateT = TypeVar("_CandidateT", DeviceRecord, GroupCandidate)


class CoordinatorState(str, Enum):
    """States of the selection workflow."""

    MODE_SELECT = "mode_select"
    DEVICE_QUERY = "device_query"
    DEVICE_DISAMBIGUATE = "device_disambiguate"
    IDENTIFIER_TRANSLATE = "identifier_translate"
    GROUP_QUERY = "group_query"
    GROUP_DISAMBIGUATE = "group_disambiguate"
    CONFIRM = "confirm"
    MUTATE = "mutate"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` for ``DONE`` and ``FAILED``."""
        return self in (CoordinatorState.DONE, CoordinatorState.FAILED)


class FailureReason(str, Enum):
    """Why a run ended in ``FAILED``."""

    NO_DEVICES = "no_devices"
    NO_IDENTITY_OBJECT = "no_identity_object"
    NO_GROUP = "no_group"
    NO_ELIGIBLE_GROUP = "no_eligible_group"
    INVALID_SELECTION = "invalid_selection"
    CANCELLED = "cancelled"
    MUTATION_FAILED = "mutation_failed"
    REMOTE_ERROR = "remote_error"


@dataclass(slots=True, frozen=True)
class WorkflowFailure:
    """Which step failed, why, and the originating detail when there is one."""

    step: CoordinatorState
    reason: FailureReason
    message: str
    detail: str | None = None

    def describe(self) -> str:
        """Return a human-readable one-line explanation."""
        text = f"{self.message} (step: {self.step.value})"
        if self.detail:
            text += f": {self.detail}"
        return text


@dataclass(slots=True)
class WorkflowResult:
    """Terminal state of a coordinator run and everything it selected."""

    state: CoordinatorState
    history: tuple[CoordinatorState, ...]
    selector: DeviceSelector | None = None
    device: DeviceRecord | None = None
    device_object: IdentityDeviceObject | None = None
    group: GroupCandidate | None = None
    request: MembershipRequest | None = None
    mutation: MutationResult | None = None
    failure: WorkflowFailure | None = None
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is CoordinatorState.DONE

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.OK if self.succeeded else ExitCode.FAILED

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable summary for structured logging."""
        return {
            "state": self.state.value,
            "history": [state.value for state in self.history],
            "selector": (
                {"mode": self.selector.mode.value, "criterion": self.selector.criterion}
                if self.selector
                else None
            ),
            "device": self.device.to_dict() if self.device else None,
            "device_object_id": self.device_object.id if self.device_object else None,
            "group_id": self.group.id if self.group else None,
            "request": self.request.to_dict() if self.request else None,
            "dry_run": self.dry_run,
            "failure": (
                {
                    "step": self.failure.step.value,
                    "reason": self.failure.reason.value,
                    "message": self.failure.message,
                    "detail": self.failure.detail,
                }
                if self.failure
                else None
            ),
        }


class InteractiveIO(Protocol):
    """Request/response boundary used for menus, tables and answers."""

    def ask(self, prompt: str) -> str:
        """Show *prompt* and return the raw answer."""
        ...

    def info(self, message: str) -> None:
        """Show an informational line."""
        ...

    def show_devices(self, devices: Sequence[DeviceRecord]) -> None:
        """Display device candidates."""
        ...

    def show_groups(self, groups: Sequence[GroupCandidate]) -> None:
        """Display group candidates."""
        ...


@dataclass(slots=True)
class SelectionCoordinator:
    """Drive one device-to-group membership run.

    A coordinator instance is single-use: all selections live on the
    instance for the duration of :meth:`run`.
    """

    resolver: DeviceResolver
    translator: IdentifierTranslator
    groups: GroupEligibilityFilter
    mutator: MembershipMutator
    io: InteractiveIO
    selector: DeviceSelector | None = None
    group_name: str | None = None
    assume_yes: bool = False
    dry_run: bool = False
    max_attempts: int | None = None
    _pending_mode: SelectionMode | None = field(default=None, init=False)
    _devices: list[DeviceRecord] = field(default_factory=list, init=False)
    _device: DeviceRecord | None = field(default=None, init=False)
    _device_object: IdentityDeviceObject | None = field(default=None, init=False)
    _lookup: GroupLookup | None = field(default=None, init=False)
    _group: GroupCandidate | None = field(default=None, init=False)
    _request: MembershipRequest | None = field(default=None, init=False)
    _mutation: MutationResult | None = field(default=None, init=False)
    _failure: WorkflowFailure | None = field(default=None, init=False)
    _attempts: dict[CoordinatorState, int] = field(default_factory=dict, init=False)

    def run(self) -> WorkflowResult:
        """Advance from ``MODE_SELECT`` until ``DONE`` or ``FAILED``."""
        handlers: dict[CoordinatorState, Callable[[], CoordinatorState]] = {
            CoordinatorState.MODE_SELECT: self._mode_select,
            CoordinatorState.DEVICE_QUERY: self._device_query,
            CoordinatorState.DEVICE_DISAMBIGUATE: self._device_disambiguate,
            CoordinatorState.IDENTIFIER_TRANSLATE: self._identifier_translate,
            CoordinatorState.GROUP_QUERY: self._group_query,
            CoordinatorState.GROUP_DISAMBIGUATE: self._group_disambiguate,
            CoordinatorState.CONFIRM: self._confirm,
            CoordinatorState.MUTATE: self._mutate,
        }
        history: list[CoordinatorState] = []
        state = CoordinatorState.MODE_SELECT
        while not state.is_terminal:
            history.append(state)
            try:
                next_state = handlers[state]()
            except DeviceGroupError as exc:
                next_state = self._fail(
                    state,
                    FailureReason.REMOTE_ERROR,
                    "Directory request failed",
                    exc.describe() if isinstance(exc, DirectoryError) else str(exc),
                )
            if next_state is state:
                self._attempts[state] = self._attempts.get(state, 0) + 1
                if self.max_attempts is not None and self._attempts[state] >= self.max_attempts:
                    next_state = self._fail(
                        state,
                        FailureReason.INVALID_SELECTION,
                        f"No valid answer after {self.max_attempts} attempt(s)",
                    )
            LOGGER.debug("Coordinator %s -> %s", state.value, next_state.value)
            state = next_state
        history.append(state)

        return WorkflowResult(
            state=state,
            history=tuple(history),
            selector=self.selector,
            device=self._device,
            device_object=self._device_object,
            group=self._group,
            request=self._request,
            mutation=self._mutation,
            failure=self._failure,
            dry_run=self.dry_run,
        )

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------
    def _mode_select(self) -> CoordinatorState:
        if self.selector is not None:
            return CoordinatorState.DEVICE_QUERY

        if self._pending_mode is None:
            if not self._attempts.get(CoordinatorState.MODE_SELECT):
                self.io.info("How do you want to find the device?")
                for index, mode in enumerate(MODE_MENU, start=1):
                    self.io.info(f"  {index}. {mode.label}")
            answer = self.io.ask(f"Select an option [1-{len(MODE_MENU)}]").strip()
            if answer not in {str(index) for index in range(1, len(MODE_MENU) + 1)}:
                self.io.info(f"Invalid option '{answer}'. Enter 1, 2 or 3.")
                return CoordinatorState.MODE_SELECT
            self._pending_mode = MODE_MENU[int(answer) - 1]

        criterion = self.io.ask(self._pending_mode.label).strip()
        if not criterion:
            self.io.info("A value is required.")
            return CoordinatorState.MODE_SELECT
        self.selector = DeviceSelector(mode=self._pending_mode, criterion=criterion)
        return CoordinatorState.DEVICE_QUERY

    def _device_query(self) -> CoordinatorState:
        selector = _selected(self.selector, "device selector")
        self._devices = self.resolver.resolve(selector)
        if not self._devices:
            return self._fail(
                CoordinatorState.DEVICE_QUERY,
                FailureReason.NO_DEVICES,
                f"No managed devices found for {selector.mode.value} '{selector.criterion}'",
            )
        return CoordinatorState.DEVICE_DISAMBIGUATE

    def _device_disambiguate(self) -> CoordinatorState:
        if not self._attempts.get(CoordinatorState.DEVICE_DISAMBIGUATE):
            self.io.show_devices(self._devices)
        answer = self.io.ask("Managed device id to use").strip()
        chosen = _match_by_id(self._devices, answer)
        if chosen is None:
            self.io.info(f"'{answer}' is not one of the listed device ids.")
            return CoordinatorState.DEVICE_DISAMBIGUATE
        self._device = chosen
        return CoordinatorState.IDENTIFIER_TRANSLATE

    def _identifier_translate(self) -> CoordinatorState:
        device = _selected(self._device, "device")
        outcome = self.translator.translate(device.azure_ad_device_id)
        if outcome.status is TranslationStatus.NOT_FOUND:
            return self._fail(
                CoordinatorState.IDENTIFIER_TRANSLATE,
                FailureReason.NO_IDENTITY_OBJECT,
                f"No identity object found for device '{device.device_name}' "
                f"(device id '{outcome.device_id or 'unset'}')",
            )
        if outcome.status is TranslationStatus.ERROR:
            return self._fail(
                CoordinatorState.IDENTIFIER_TRANSLATE,
                FailureReason.REMOTE_ERROR,
                "Identity device lookup failed",
                outcome.error,
            )
        self._device_object = outcome.device_object
        return CoordinatorState.GROUP_QUERY

    def _group_query(self) -> CoordinatorState:
        name = (self.group_name or "").strip()
        if not name:
            name = self.io.ask("Group display name").strip()
            if not name:
                self.io.info("A group name is required.")
                return CoordinatorState.GROUP_QUERY
            self.group_name = name

        lookup = self.groups.find_eligible(name)
        self._lookup = lookup
        if lookup.status is GroupLookupStatus.NO_MATCH:
            return self._fail(
                CoordinatorState.GROUP_QUERY,
                FailureReason.NO_GROUP,
                f"No group named '{name}' exists",
            )
        if lookup.status is GroupLookupStatus.NONE_ELIGIBLE:
            reasons = "; ".join(
                f"{group.id}: {', '.join(group.ineligibility_reasons())}"
                for group in lookup.rejected
            )
            return self._fail(
                CoordinatorState.GROUP_QUERY,
                FailureReason.NO_ELIGIBLE_GROUP,
                f"No eligible group named '{name}' (needs security-enabled, "
                "not mail-enabled, static membership)",
                reasons,
            )
        return CoordinatorState.GROUP_DISAMBIGUATE

    def _group_disambiguate(self) -> CoordinatorState:
        eligible = _selected(self._lookup, "group lookup").eligible
        if len(eligible) == 1:
            self._group = eligible[0]
            self.io.info(f"Using group {self._group.display_name} ({self._group.id}).")
            return CoordinatorState.CONFIRM

        if not self._attempts.get(CoordinatorState.GROUP_DISAMBIGUATE):
            self.io.show_groups(eligible)
        answer = self.io.ask("Group id to use").strip()
        chosen = _match_by_id(eligible, answer)
        if chosen is None:
            self.io.info(f"'{answer}' is not one of the listed group ids.")
            return CoordinatorState.GROUP_DISAMBIGUATE
        self._group = chosen
        return CoordinatorState.CONFIRM

    def _confirm(self) -> CoordinatorState:
        group = _selected(self._group, "group")
        self._request = MembershipRequest(
            group_id=group.id,
            device_object_id=_selected(self._device_object, "identity object").id,
            group_name=group.display_name,
            device_name=_selected(self._device, "device").device_name,
        )
        summary = (
            f"device {self._request.device_name} ({self._request.device_object_id}) "
            f"to group {self._request.group_name} ({self._request.group_id})"
        )
        if self.dry_run:
            self.io.info(f"Dry run: would add {summary}.")
            return CoordinatorState.DONE
        if self.assume_yes:
            return CoordinatorState.MUTATE

        answer = self.io.ask(f"Add {summary}? [y/n]").strip().lower()
        if answer in YES_ANSWERS:
            return CoordinatorState.MUTATE
        if answer in NO_ANSWERS:
            return self._fail(
                CoordinatorState.CONFIRM,
                FailureReason.CANCELLED,
                "Membership change cancelled by operator",
            )
        self.io.info("Please answer 'y' or 'n'.")
        return CoordinatorState.CONFIRM

    def _mutate(self) -> CoordinatorState:
        request = _selected(self._request, "membership request")
        self._mutation = self.mutator.add_member(request)
        if not self._mutation.succeeded:
            return self._fail(
                CoordinatorState.MUTATE,
                FailureReason.MUTATION_FAILED,
                f"Adding device object {request.device_object_id} to group "
                f"{request.group_id} failed",
                self._mutation.error,
            )
        return CoordinatorState.DONE

    # ------------------------------------------------------------------
    def _fail(
        self,
        step: CoordinatorState,
        reason: FailureReason,
        message: str,
        detail: str | None = None,
    ) -> CoordinatorState:
        self._failure = WorkflowFailure(step=step, reason=reason, message=message, detail=detail)
        LOGGER.debug("Coordinator failed at %s: %s", step.value, self._failure.describe())
        return CoordinatorState.FAILED


_T = TypeVar("_T")


def _selected(value: _T | None, what: str) -> _T:
    if value is None:
        raise RuntimeError(f"Coordinator reached a step without a selected {what}.")
    return value


def _match_by_id(candidates: Sequence[_CandidateT], answer: str) -> _CandidateT | None:
    wanted = answer.strip().lower()
    if not wanted:
        return None
    for candidate in candidates:
        if candidate.id.lower() == wanted:
            return candidate
    return None


__all__ = [
    "CoordinatorState",
    "FailureReason",
    "InteractiveIO",
    "SelectionCoordinator",
    "WorkflowFailure",
    "WorkflowResult",
]
