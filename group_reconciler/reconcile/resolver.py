"""
Import identifier resolution.

An import identifier is either a bare group UUID or
``<organization-name>/<group-name>``. Anything else is rejected before any
remote call is made.
"""
from __future__ import annotations

from ..core.coder_client import CoderClient, HttpError
from ..core.errors import (
    GroupNotFoundError,
    MalformedIdentifierError,
    OrganizationNotFoundError,
    RemoteOperationError,
)
from ..core.logging_utils import get_logger
from ..core.models import parse_uuid

log = get_logger(__name__)

FORMAT_HINT = "expected a single UUID or `<organization-name>/<group-name>`"


def resolve_import_id(client: CoderClient, identifier: str) -> str:
    """Return the canonical group ID named by ``identifier``.

    A bare UUID is returned as-is, without calling the API. For the
    ``org/name`` form, the organization is looked up first and the group only
    once the organization is known.

    Raises:
        MalformedIdentifierError: Bad shape, or a single token that is not a UUID.
        OrganizationNotFoundError: The organization does not exist.
        GroupNotFoundError: The organization has no group with that name.
        RemoteOperationError: Any other API failure.
    """
    parts = identifier.split("/")

    if len(parts) == 1:
        try:
            return parse_uuid(identifier)
        except ValueError as exc:
            raise MalformedIdentifierError(
                f"Unable to parse import group ID as UUID, got error: {exc}"
            ) from exc

    if len(parts) != 2:
        raise MalformedIdentifierError(f"Invalid import ID format {identifier!r}, {FORMAT_HINT}")

    org_name, group_name = parts
    if not org_name or not group_name:
        raise MalformedIdentifierError(f"Invalid import ID format {identifier!r}, {FORMAT_HINT}")

    try:
        org = client.organization_by_name(org_name)
    except HttpError as exc:
        if exc.not_found:
            raise OrganizationNotFoundError(org_name, exc) from exc
        raise RemoteOperationError("import", exc, message=f"Failed to get organization with name {org_name}") from exc

    try:
        group = client.group_by_org_and_name(org.id, group_name)
    except HttpError as exc:
        if exc.not_found:
            raise GroupNotFoundError(group_name, exc) from exc
        raise RemoteOperationError("import", exc, message=f"Failed to get group with name {group_name}") from exc

    log.debug("resolved %s to group %s", identifier, group.id)
    return group.id
