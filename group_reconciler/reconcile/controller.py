"""
GroupController: lifecycle of a managed group: create → read → update → delete,
plus import of an existing group.

The controller is stateless. Every operation receives the snapshot it works
on and returns the snapshot to persist (or raises a
:class:`~group_reconciler.core.errors.ReconcileError`). Remote failures are
wrapped in :class:`RemoteOperationError` with the operation name and surfaced
immediately; nothing is retried here.

Operations on the same group must be serialised by the caller.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from ..core.coder_client import CoderClient, HttpError
from ..core.errors import (
    EntitlementDeniedError,
    ReconcileError,
    RemoteOperationError,
    UnmanageableGroupError,
)
from ..core.logging_utils import get_logger
from ..core.models import UNKNOWN, Group, GroupState, is_unknown
from ..utils.diff_engine import member_diff
from .resolver import resolve_import_id

log = get_logger(__name__)

# Licensed feature that gates group management on a Coder deployment.
GROUPS_FEATURE = "template_rbac"

EntitlementLookup = Callable[[str], bool]


class GroupController:
    """Reconcile one group at a time against the Coder API.

    Args:
        client: API client used for every remote call.
        entitlements: ``feature name -> enabled`` lookup. Defaults to
            ``client.feature_enabled``.
        default_organization_id: Organization used when the desired snapshot
            leaves it unknown. Resolved through the API on first use if omitted.
    """

    def __init__(
        self,
        client: CoderClient,
        *,
        entitlements: Optional[EntitlementLookup] = None,
        default_organization_id: Optional[str] = None,
    ) -> None:
        self.client = client
        self._entitlements = entitlements or client.feature_enabled
        self._default_org = default_organization_id

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _check_entitlements(self) -> None:
        try:
            enabled = self._entitlements(GROUPS_FEATURE)
        except HttpError as exc:
            raise RemoteOperationError("create", exc, message="Unable to read entitlements") from exc
        if not enabled:
            raise EntitlementDeniedError("Feature not enabled: your license is not entitled to use groups.")

    def _default_organization(self, operation: str) -> str:
        if self._default_org is None:
            try:
                self._default_org = self.client.default_organization_id()
            except HttpError as exc:
                raise RemoteOperationError(
                    operation, exc, message="Unable to resolve the default organization"
                ) from exc
        return self._default_org

    def _fetch(self, group_id: str, operation: str, message: str = "Unable to get group") -> Group:
        try:
            return self.client.group(group_id)
        except HttpError as exc:
            raise RemoteOperationError(operation, exc, message=message) from exc

    @staticmethod
    def _require_id(state: GroupState, operation: str) -> str:
        if is_unknown(state.id) or not state.id:
            raise ReconcileError(f"{operation}: snapshot has no group ID")
        return state.id

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def create(self, desired: GroupState) -> GroupState:
        """Create the group, then add its members if membership is managed.

        No remote mutation happens when the license does not allow groups. If
        adding members fails, the raised error carries ``partial_state`` with
        the new group's ID: the group exists and must not be created again.
        """
        self._check_entitlements()

        org_id = desired.organization_id
        if is_unknown(org_id):
            org_id = self._default_organization("create")

        display_name = "" if is_unknown(desired.display_name) else desired.display_name

        log.info("creating group name=%s organization=%s", desired.name, org_id)
        try:
            group = self.client.create_group(
                org_id,
                name=desired.name,
                display_name=display_name,
                avatar_url=desired.avatar_url,
                quota_allowance=desired.quota_allowance,
            )
        except HttpError as exc:
            raise RemoteOperationError("create", exc, message="Unable to create group") from exc
        log.info("successfully created group id=%s", group.id)

        state = desired.evolve(
            id=group.id,
            organization_id=org_id,
            display_name=group.display_name,
        )

        if not desired.manages_members:
            return state

        members = sorted(desired.members or ())
        log.info("setting group members id=%s count=%d", group.id, len(members))
        try:
            self.client.patch_group(group.id, add_users=members)
        except HttpError as exc:
            # The group exists now; the caller persists it without members so
            # the next update reconciles membership instead of re-creating.
            raise RemoteOperationError(
                "create",
                exc,
                message="Unable to add members to group",
                partial_state=state.evolve(members=frozenset()),
            ) from exc
        log.info("successfully set group members id=%s", group.id)
        return state

    def read(self, state: GroupState) -> GroupState:
        """Refresh a snapshot from the API.

        Members are refreshed only when ``state`` manages them; an unmanaged
        snapshot keeps ``members=None``.
        """
        group_id = self._require_id(state, "read")
        group = self._fetch(group_id, "read")
        if group.externally_sourced:
            log.warning("group %s is now sourced from %s; changes may be overwritten", group.id, group.source)

        return GroupState(
            id=group.id,
            name=group.name,
            display_name=group.display_name,
            avatar_url=group.avatar_url,
            quota_allowance=group.quota_allowance,
            organization_id=group.organization_id,
            members=group.member_ids if state.manages_members else None,
        )

    def update(self, desired: GroupState) -> GroupState:
        """Converge an existing group to ``desired`` with a single PATCH.

        The group is re-fetched first; membership deltas and changed scalar
        fields are computed against that fresh copy, never against a cached
        snapshot. Organization changes are rejected: they need a replacement.
        """
        group_id = self._require_id(desired, "update")
        group = self._fetch(group_id, "update")

        org_id = desired.organization_id
        if is_unknown(org_id):
            org_id = group.organization_id
        elif org_id != group.organization_id:
            raise ReconcileError(
                f"update: organization_id of group {group_id} cannot change in place "
                f"({group.organization_id} -> {org_id}); the group must be replaced"
            )
        if group.externally_sourced:
            log.warning("group %s is sourced from %s; updating it anyway", group.id, group.source)

        changes: Dict[str, Any] = {}
        if desired.manages_members:
            add, remove = member_diff(group.members, sorted(desired.members or ()))
            changes["add_users"] = add
            changes["remove_users"] = remove
        if desired.name != group.name:
            changes["name"] = desired.name
        if not is_unknown(desired.display_name) and desired.display_name != group.display_name:
            changes["display_name"] = desired.display_name
        if desired.avatar_url != group.avatar_url:
            changes["avatar_url"] = desired.avatar_url
        if desired.quota_allowance != group.quota_allowance:
            changes["quota_allowance"] = desired.quota_allowance

        log.info(
            "updating group id=%s new_members=%s removed_members=%s fields=%s",
            group_id,
            changes.get("add_users"),
            changes.get("remove_users"),
            sorted(k for k in changes if k not in ("add_users", "remove_users")),
        )
        try:
            patched = self.client.patch_group(group_id, **changes)
        except HttpError as exc:
            raise RemoteOperationError("update", exc, message="Unable to update group") from exc
        log.info("successfully updated group id=%s", group_id)

        display_name = patched.display_name if is_unknown(desired.display_name) else desired.display_name
        return desired.evolve(organization_id=org_id, display_name=display_name)

    def delete(self, state: GroupState) -> None:
        """Delete the group. A group that is already gone counts as deleted."""
        group_id = self._require_id(state, "delete")
        log.info("deleting group id=%s", group_id)
        try:
            self.client.delete_group(group_id)
        except HttpError as exc:
            if not exc.not_found:
                raise RemoteOperationError("delete", exc, message="Unable to delete group") from exc
            log.warning("group %s was already deleted", group_id)
            return
        log.info("successfully deleted group id=%s", group_id)

    def import_state(self, identifier: str) -> GroupState:
        """Adopt an existing group. Only the ID is returned; :meth:`read` fills the rest.

        Raises:
            UnmanageableGroupError: The group is synchronised from OIDC.
        """
        group_id = resolve_import_id(self.client, identifier)
        group = self._fetch(group_id, "import", message="Unable to get imported group")
        if group.externally_sourced:
            raise UnmanageableGroupError("Cannot import groups created via OIDC")
        log.info("imported group id=%s", group_id)
        return GroupState(id=group_id, display_name=UNKNOWN)
