import pytest

from conftest import ORG_ID, OTHER_ORG_ID, U1, U2, U3
from group_reconciler.core.coder_client import HttpError
from group_reconciler.core.errors import (
    EntitlementDeniedError,
    ReconcileError,
    RemoteOperationError,
    UnmanageableGroupError,
)
from group_reconciler.core.models import UNKNOWN, GroupState
from group_reconciler.reconcile.controller import GroupController


def _desired(**kw):
    base = dict(name="devs", display_name="Developers", avatar_url="", quota_allowance=0)
    base.update(kw)
    return GroupState(**base)


# ----- create -----------------------------------------------------------------

def test_create_denied_without_entitlement_makes_no_calls(fake):
    ctl = GroupController(fake, entitlements=lambda name: False, default_organization_id=ORG_ID)
    with pytest.raises(EntitlementDeniedError):
        ctl.create(_desired(members=frozenset({U1})))
    assert fake.calls == []


def test_create_uses_client_entitlements_by_default(fake):
    fake.features["template_rbac"] = False
    with pytest.raises(EntitlementDeniedError):
        GroupController(fake).create(_desired())
    assert fake.calls == []


def test_create_with_members_issues_one_patch(fake, controller):
    state = controller.create(_desired(members=frozenset({U1, U2})))

    assert fake.ops() == ["create_group", "patch_group"]
    patch = fake.last("patch_group")
    assert set(patch["add_users"]) == {U1, U2}
    assert not patch.get("remove_users")
    assert patch["group_id"] == state.id
    assert state.members == frozenset({U1, U2})
    assert set(fake.groups[state.id].members) == {U1, U2}


def test_create_without_managed_members_skips_patch(fake, controller):
    state = controller.create(_desired(members=None))
    assert fake.ops() == ["create_group"]
    assert state.members is None


def test_create_resolves_unknown_org_and_captures_server_values(fake, controller):
    state = controller.create(_desired(organization_id=UNKNOWN, display_name=UNKNOWN))

    create = fake.last("create_group")
    assert create["organization_id"] == ORG_ID
    assert create["display_name"] == ""
    assert state.organization_id == ORG_ID
    assert state.id in fake.groups
    assert state.display_name == ""


def test_create_looks_up_default_org_when_not_configured(fake):
    ctl = GroupController(fake)
    state = ctl.create(_desired())
    assert state.organization_id == ORG_ID
    assert fake.ops() == ["organization_by_name", "create_group"]


def test_create_keeps_configured_org(fake, controller):
    state = controller.create(_desired(organization_id=OTHER_ORG_ID))
    assert fake.last("create_group")["organization_id"] == OTHER_ORG_ID
    assert state.organization_id == OTHER_ORG_ID


def test_create_failure_is_wrapped(fake, controller):
    fake.fail["create_group"] = HttpError(status=400, url="fake://groups", message="name taken")
    with pytest.raises(RemoteOperationError) as ei:
        controller.create(_desired())
    assert ei.value.operation == "create"
    assert ei.value.partial_state is None
    assert "name taken" in str(ei.value)


def test_member_failure_after_create_reports_partial_state(fake, controller):
    fake.fail["patch_group"] = HttpError(status=400, url="fake://patch", message="unknown user")
    with pytest.raises(RemoteOperationError) as ei:
        controller.create(_desired(members=frozenset({U1})))

    partial = ei.value.partial_state
    assert partial is not None
    assert partial.id in fake.groups  # not rolled back
    assert partial.members == frozenset()
    assert "delete_group" not in fake.ops()


# ----- read -------------------------------------------------------------------

def test_read_maps_remote_fields_and_managed_members(fake, controller):
    gid = fake.add_group("devs", members=[U1, U2], display_name="Devs", avatar_url="/a.png", quota_allowance=7)

    state = controller.read(GroupState(id=gid, members=frozenset()))

    assert state == GroupState(
        id=gid, name="devs", display_name="Devs", avatar_url="/a.png",
        quota_allowance=7, organization_id=ORG_ID, members=frozenset({U1, U2}),
    )


def test_read_leaves_unmanaged_members_unset(fake, controller):
    gid = fake.add_group("devs", members=[U1])
    state = controller.read(GroupState(id=gid, members=None))
    assert state.members is None
    assert state.name == "devs"


def test_read_requires_id(controller):
    with pytest.raises(ReconcileError):
        controller.read(GroupState())


def test_read_not_found_is_wrapped(fake, controller):
    with pytest.raises(RemoteOperationError) as ei:
        controller.read(GroupState(id=U3))
    assert ei.value.operation == "read"
    assert ei.value.cause.status == 404


# ----- update -----------------------------------------------------------------

def test_update_diffs_against_fresh_remote_members(fake, controller):
    gid = fake.add_group("devs", members=[U1, U2], display_name="Developers")

    controller.update(_desired(id=gid, organization_id=ORG_ID, members=frozenset({U2, U3})))

    assert fake.ops() == ["group", "patch_group"]
    patch = fake.last("patch_group")
    assert set(patch["add_users"]) == {U3}
    assert set(patch["remove_users"]) == {U1}
    assert set(fake.groups[gid].members) == {U2, U3}


def test_update_ignores_stale_cached_members(fake, controller):
    gid = fake.add_group("devs", members=[U3], display_name="Developers")
    # The caller's prior state believed U1 was the only member; the remote says U3.
    controller.update(_desired(id=gid, members=frozenset({U1})))
    patch = fake.last("patch_group")
    assert patch["add_users"] == [U1]
    assert patch["remove_users"] == [U3]


def test_update_unmanaged_members_sends_no_membership_fields(fake, controller):
    gid = fake.add_group("devs", members=[U1], display_name="Developers")

    state = controller.update(_desired(id=gid, quota_allowance=5, members=None))

    patch = fake.last("patch_group")
    assert "add_users" not in patch and "remove_users" not in patch
    assert patch["quota_allowance"] == 5
    assert fake.groups[gid].members == [U1]
    assert state.members is None


def test_update_sends_only_changed_scalars(fake, controller):
    gid = fake.add_group("devs", display_name="Developers", avatar_url="/old.png")

    state = controller.update(_desired(id=gid, name="devs-2", avatar_url="/new.png"))

    patch = fake.last("patch_group")
    assert patch["name"] == "devs-2"
    assert patch["avatar_url"] == "/new.png"
    assert "display_name" not in patch and "quota_allowance" not in patch
    assert state.organization_id == ORG_ID
    assert fake.groups[gid].name == "devs-2"


def test_update_rejects_organization_change(fake, controller):
    gid = fake.add_group("devs")
    with pytest.raises(ReconcileError):
        controller.update(_desired(id=gid, organization_id=OTHER_ORG_ID))
    assert "patch_group" not in fake.ops()


def test_update_patch_failure_is_wrapped(fake, controller):
    gid = fake.add_group("devs")
    fake.fail["patch_group"] = HttpError(status=400, url="fake://patch", message="invalid name")
    with pytest.raises(RemoteOperationError) as ei:
        controller.update(_desired(id=gid, name="Bad Name"))
    assert ei.value.operation == "update"


# ----- delete / import --------------------------------------------------------

def test_delete(fake, controller):
    gid = fake.add_group("devs")
    controller.delete(GroupState(id=gid))
    assert gid not in fake.groups


def test_delete_of_missing_group_is_success(fake, controller):
    controller.delete(GroupState(id=U1))
    assert fake.ops() == ["delete_group"]


def test_delete_failure_is_wrapped(fake, controller):
    gid = fake.add_group("devs")
    fake.fail["delete_group"] = HttpError(status=500, url="fake://delete", message="boom")
    with pytest.raises(RemoteOperationError) as ei:
        controller.delete(GroupState(id=gid))
    assert ei.value.operation == "delete"


def test_import_by_uuid_returns_only_the_id(fake, controller):
    gid = fake.add_group("devs", members=[U1])

    state = controller.import_state(gid)

    assert state.id == gid
    assert state.members is None
    assert state.name == ""
    assert fake.ops() == ["group"]


def test_import_by_org_and_name(fake, controller):
    gid = fake.add_group("devs", org_id=OTHER_ORG_ID)
    state = controller.import_state("acme/devs")
    assert state.id == gid
    assert fake.ops() == ["organization_by_name", "group_by_org_and_name", "group"]


def test_import_rejects_oidc_groups(fake, controller):
    gid = fake.add_group("devs", source="oidc")
    with pytest.raises(UnmanageableGroupError):
        controller.import_state(gid)
    assert fake.ops() == ["group"]


def test_import_of_missing_uuid_is_wrapped(fake, controller):
    with pytest.raises(RemoteOperationError) as ei:
        controller.import_state(U3)
    assert ei.value.operation == "import"
