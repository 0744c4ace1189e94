"""Tests for the interactive selection state machine."""
from __future__ import annotations

from typing import Any

from conftest import FakeDirectoryClient, ScriptedIO, directory_group, managed_device

from devicegroupctl.coordinator import CoordinatorState, FailureReason, SelectionCoordinator
from devicegroupctl.errors import DependencyError, DirectoryError
from devicegroupctl.exit_codes import ExitCode
from devicegroupctl.groups import GroupEligibilityFilter
from devicegroupctl.membership import MembershipMutator
from devicegroupctl.models import DeviceSelector, SelectionMode, TranslationStatus
from devicegroupctl.providers.graph import GraphClient
from devicegroupctl.resolver import DeviceResolver
from devicegroupctl.translator import IdentifierTranslator

S = CoordinatorState
OWNER_FILTER = "userPrincipalName eq 'alice@example.com'"
GROUP_FILTER = "displayName eq 'Secure-Laptops'"


def _coordinator(client: FakeDirectoryClient, io: ScriptedIO, **kwargs: Any) -> SelectionCoordinator:
    return SelectionCoordinator(
        resolver=DeviceResolver(client),
        translator=IdentifierTranslator(client),
        groups=GroupEligibilityFilter(client),
        mutator=MembershipMutator(client),
        io=io,
        **kwargs,
    )


def _alice_client(**kwargs: Any) -> FakeDirectoryClient:
    return FakeDirectoryClient(
        managed_devices={
            OWNER_FILTER: [
                managed_device("dev-1", name="LAPTOP-001", azure_ad_device_id="aad-1"),
                managed_device("dev-2", name="LAPTOP-002", azure_ad_device_id="aad-2"),
            ]
        },
        devices={
            "deviceId eq 'aad-1'": [{"id": "obj-1", "deviceId": "aad-1"}],
            "deviceId eq 'aad-2'": [{"id": "obj-2", "deviceId": "aad-2"}],
        },
        groups={GROUP_FILTER: [directory_group("grp-1")]},
        **kwargs,
    )


def test_owner_lookup_two_devices_end_to_end() -> None:
    """Pick the second of two devices, auto-select the only eligible group, add."""
    client = _alice_client()
    io = ScriptedIO(["1", "alice@example.com", "dev-2", "Secure-Laptops", "y"])

    result = _coordinator(client, io).run()

    assert result.state is S.DONE
    assert result.exit_code is ExitCode.OK
    assert result.history == (
        S.MODE_SELECT,
        S.DEVICE_QUERY,
        S.DEVICE_DISAMBIGUATE,
        S.IDENTIFIER_TRANSLATE,
        S.GROUP_QUERY,
        S.GROUP_DISAMBIGUATE,
        S.CONFIRM,
        S.MUTATE,
        S.DONE,
    )
    assert client.added == [("grp-1", "obj-2")]
    assert [device.id for device in io.device_tables[0]] == ["dev-1", "dev-2"]
    assert "Group id to use" not in io.prompts
    assert result.selector == DeviceSelector(SelectionMode.OWNER, "alice@example.com")
    assert result.mutation is not None and result.mutation.succeeded


def test_identifier_without_identity_object_fails_before_groups() -> None:
    """A device missing from the identity directory never reaches the group lookup."""
    client = FakeDirectoryClient(
        managed_by_id={"dev-9": managed_device("dev-9", name="KIOSK", azure_ad_device_id="aad-9")}
    )
    io = ScriptedIO(["dev-9"])
    selector = DeviceSelector(SelectionMode.IDENTIFIER, "dev-9")

    result = _coordinator(client, io, selector=selector, group_name="Secure-Laptops").run()

    assert result.state is S.FAILED
    assert result.exit_code is ExitCode.FAILED
    assert result.failure is not None
    assert result.failure.step is S.IDENTIFIER_TRANSLATE
    assert result.failure.reason is FailureReason.NO_IDENTITY_OBJECT
    assert "No identity object" in result.failure.describe()
    assert "list_groups" not in client.methods_called()
    assert client.added == []


def test_single_eligible_group_among_several_is_used() -> None:
    """Mail-enabled and dynamic groups are dropped and the remaining one is used."""
    client = _alice_client()
    client.groups = {
        GROUP_FILTER: [
            directory_group("grp-mail", mail=True),
            directory_group("grp-dyn", group_types=["DynamicMembership"]),
            directory_group("grp-ok"),
        ]
    }
    io = ScriptedIO(["dev-1", "yes"])
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(client, io, selector=selector, group_name="Secure-Laptops").run()

    assert result.state is S.DONE
    assert result.group is not None and result.group.id == "grp-ok"
    assert client.added == [("grp-ok", "obj-1")]
    assert any("Using group" in message for message in io.messages)


def test_single_device_is_still_confirmed() -> None:
    client = FakeDirectoryClient(
        managed_devices={"contains(deviceName,'LAPTOP')": [managed_device("dev-1", azure_ad_device_id="aad-1")]},
        devices={"deviceId eq 'aad-1'": [{"id": "obj-1"}]},
        groups={GROUP_FILTER: [directory_group("grp-1")]},
    )
    io = ScriptedIO(["DEV-1"])
    selector = DeviceSelector(SelectionMode.NAME, "LAPTOP")

    result = _coordinator(
        client, io, selector=selector, group_name="Secure-Laptops", assume_yes=True
    ).run()

    assert result.state is S.DONE
    assert io.prompts == ["Managed device id to use"]


def test_invalid_menu_choice_reprompts() -> None:
    client = _alice_client()
    io = ScriptedIO(["4", "", "1", "alice@example.com", "dev-1"])

    result = _coordinator(client, io, group_name="Secure-Laptops", dry_run=True).run()

    assert result.state is S.DONE
    assert result.history[:4] == (S.MODE_SELECT, S.MODE_SELECT, S.MODE_SELECT, S.DEVICE_QUERY)
    assert sum(1 for message in io.messages if message.startswith("Invalid option")) == 2
    assert sum(1 for message in io.messages if message.startswith("  1.")) == 1


def test_blank_criterion_reprompts_for_value_only() -> None:
    client = _alice_client()
    io = ScriptedIO(["1", " ", "alice@example.com", "dev-1"])

    result = _coordinator(client, io, group_name="Secure-Laptops", dry_run=True).run()

    assert result.state is S.DONE
    assert io.prompts[:3] == [
        "Select an option [1-3]",
        "Owner user principal name",
        "Owner user principal name",
    ]


def test_invalid_device_id_self_loops() -> None:
    client = _alice_client()
    io = ScriptedIO(["dev-x", "dev-1"])
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(
        client, io, selector=selector, group_name="Secure-Laptops", dry_run=True
    ).run()

    assert result.state is S.DONE
    assert result.history.count(S.DEVICE_DISAMBIGUATE) == 2
    assert len(io.device_tables) == 1
    assert result.device is not None and result.device.id == "dev-1"


def test_max_attempts_fails_with_invalid_selection() -> None:
    client = _alice_client()
    io = ScriptedIO(["nope", "still-nope"])
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(client, io, selector=selector, max_attempts=2).run()

    assert result.state is S.FAILED
    assert result.failure is not None
    assert result.failure.reason is FailureReason.INVALID_SELECTION
    assert result.failure.step is S.DEVICE_DISAMBIGUATE
    assert result.history[-3:] == (S.DEVICE_DISAMBIGUATE, S.DEVICE_DISAMBIGUATE, S.FAILED)


def test_no_devices_fails_without_translation() -> None:
    for selector in (
        DeviceSelector(SelectionMode.OWNER, "nobody@example.com"),
        DeviceSelector(SelectionMode.NAME, "NOPE"),
        DeviceSelector(SelectionMode.IDENTIFIER, "missing"),
    ):
        client = FakeDirectoryClient()
        result = _coordinator(client, ScriptedIO(), selector=selector).run()

        assert result.state is S.FAILED
        assert result.failure is not None
        assert result.failure.reason is FailureReason.NO_DEVICES
        assert "list_devices" not in client.methods_called()


def test_remote_error_during_device_query() -> None:
    client = FakeDirectoryClient(
        errors={"list_managed_devices": DirectoryError("Graph unavailable", status_code=503)}
    )
    selector = DeviceSelector(SelectionMode.NAME, "X")

    result = _coordinator(client, ScriptedIO(), selector=selector).run()

    assert result.failure is not None
    assert result.failure.reason is FailureReason.REMOTE_ERROR
    assert result.failure.step is S.DEVICE_QUERY
    assert "status=503" in result.failure.describe()


def test_translation_error_is_remote_error() -> None:
    client = _alice_client(errors={"list_devices": DirectoryError("Graph unavailable")})
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(client, ScriptedIO(["dev-1"]), selector=selector).run()

    assert result.failure is not None
    assert result.failure.reason is FailureReason.REMOTE_ERROR
    assert result.failure.step is S.IDENTIFIER_TRANSLATE


def test_no_group_and_no_eligible_group() -> None:
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    missing = _coordinator(
        _alice_client(), ScriptedIO(["dev-1"]), selector=selector, group_name="Other"
    ).run()
    assert missing.failure is not None
    assert missing.failure.reason is FailureReason.NO_GROUP

    client = _alice_client()
    client.groups = {GROUP_FILTER: [directory_group("grp-mail", mail=True)]}
    ineligible = _coordinator(
        client, ScriptedIO(["dev-1"]), selector=selector, group_name="Secure-Laptops"
    ).run()
    assert ineligible.failure is not None
    assert ineligible.failure.reason is FailureReason.NO_ELIGIBLE_GROUP
    assert ineligible.failure.detail == "grp-mail: mail-enabled"
    assert client.added == []


def test_multiple_eligible_groups_prompt_for_id() -> None:
    client = _alice_client()
    client.groups = {GROUP_FILTER: [directory_group("grp-a"), directory_group("grp-b")]}
    io = ScriptedIO(["dev-1", "grp-c", "GRP-B", "y"])
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(client, io, selector=selector, group_name="Secure-Laptops").run()

    assert result.state is S.DONE
    assert client.added == [("grp-b", "obj-1")]
    assert len(io.group_tables) == 1
    assert result.history.count(S.GROUP_DISAMBIGUATE) == 2


def test_group_name_is_prompted_when_missing() -> None:
    client = _alice_client()
    io = ScriptedIO(["dev-1", "", "Secure-Laptops"])
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(client, io, selector=selector, assume_yes=True).run()

    assert result.state is S.DONE
    assert io.prompts.count("Group display name") == 2


def test_operator_declines() -> None:
    client = _alice_client()
    io = ScriptedIO(["dev-1", "maybe", "n"])
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(client, io, selector=selector, group_name="Secure-Laptops").run()

    assert result.failure is not None
    assert result.failure.reason is FailureReason.CANCELLED
    assert result.history.count(S.CONFIRM) == 2
    assert client.added == []


def test_dry_run_skips_mutation() -> None:
    client = _alice_client()
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(
        client, ScriptedIO(["dev-1"]), selector=selector, group_name="Secure-Laptops", dry_run=True
    ).run()

    assert result.state is S.DONE
    assert S.MUTATE not in result.history
    assert result.request is not None and result.request.group_id == "grp-1"
    assert client.added == []
    assert result.to_dict()["dry_run"] is True


def test_mutation_failure_reports_detail() -> None:
    client = _alice_client(
        errors={
            "add_group_member": DirectoryError(
                "Graph request failed.",
                status_code=400,
                detail="One or more added object references already exist.",
            )
        }
    )
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(
        client, ScriptedIO(["dev-1"]), selector=selector, group_name="Secure-Laptops", assume_yes=True
    ).run()

    assert result.state is S.FAILED
    assert result.failure is not None
    assert result.failure.reason is FailureReason.MUTATION_FAILED
    assert "already exist" in (result.failure.detail or "")
    assert result.to_dict()["failure"]["step"] == "mutate"  # type: ignore[index]


def _expired_token() -> str:
    raise DependencyError("Failed to acquire a Graph access token: expired secret")


def test_token_refresh_failure_reaches_failed_state() -> None:
    """A token failure mid-run ends in FAILED with the step named."""
    client = GraphClient(token_source=_expired_token)
    selector = DeviceSelector(SelectionMode.OWNER, "alice@example.com")

    result = _coordinator(client, ScriptedIO(), selector=selector).run()  # type: ignore[arg-type]

    assert result.state is S.FAILED
    assert result.exit_code is ExitCode.FAILED
    assert result.failure is not None
    assert result.failure.reason is FailureReason.REMOTE_ERROR
    assert result.failure.step is S.DEVICE_QUERY
    assert "expired secret" in result.failure.describe()


def test_token_refresh_failure_during_translation_is_error_outcome() -> None:
    outcome = IdentifierTranslator(GraphClient(token_source=_expired_token)).translate("aad-1")

    assert outcome.status is TranslationStatus.ERROR
    assert outcome.error is not None
    assert "expired secret" in outcome.error
