"""
Error taxonomy for the group reconciler.

Every failure raised by the controller is a :class:`ReconcileError`. All of
them are terminal for the current reconciliation attempt: nothing is retried
here, the caller re-runs reconciliation.
"""
from __future__ import annotations

from typing import Any, Optional


class ReconcileError(Exception):
    """Base class for reconciliation failures."""
    pass


class MalformedIdentifierError(ReconcileError):
    """Raised when an import identifier is neither a UUID nor `<org>/<group>`."""
    pass


class OrganizationNotFoundError(ReconcileError):
    """Raised when the organization named in an import identifier does not exist."""

    def __init__(self, name: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Failed to get organization with name {name}: {cause}")
        self.name = name
        self.cause = cause


class GroupNotFoundError(ReconcileError):
    """Raised when no group with the given name exists in the organization."""

    def __init__(self, name: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Failed to get group with name {name}: {cause}")
        self.name = name
        self.cause = cause


class UnmanageableGroupError(ReconcileError):
    """Raised when a group is owned by an external identity system (e.g. OIDC sync)."""
    pass


class EntitlementDeniedError(ReconcileError):
    """Raised when the deployment license does not allow group management."""
    pass


class RemoteOperationError(ReconcileError):
    """A remote call failed while running ``operation``.

    Attributes:
        operation: Controller operation name (``create``, ``read``, ...).
        cause: The underlying client exception.
        partial_state: For ``create`` only: the snapshot of a group that was
            created before the failure. The group exists remotely and must be
            persisted by the caller instead of being created again.
    """

    def __init__(
        self,
        operation: str,
        cause: BaseException,
        *,
        message: str = "",
        partial_state: Any = None,
    ) -> None:
        self.operation = operation
        self.cause = cause
        self.partial_state = partial_state
        text = message or f"{operation} failed"
        super().__init__(f"{text}, got error: {cause}")
