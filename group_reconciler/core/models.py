"""
Domain values shared by the client, the controller and the state store.

``GroupState`` is the snapshot the controller reads and writes, both for the
desired configuration (where fields may still be :data:`UNKNOWN`) and for the
last observed remote state. ``Group`` is the record returned by the API.

The ``*_from_dict`` / ``*_to_dict`` helpers are the only place where plain
JSON/YAML values are turned into domain values and back.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, List, Optional


class UnknownValue:
    """Marker for a value that is only known after apply."""

    _instance: Optional["UnknownValue"] = None

    def __new__(cls) -> "UnknownValue":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<unknown>"

    def __bool__(self) -> bool:
        return False


UNKNOWN = UnknownValue()

# Value of Group.source for groups synchronised from an OIDC provider.
SOURCE_OIDC = "oidc"


def is_unknown(value: Any) -> bool:
    return value is UNKNOWN


def parse_uuid(value: Any) -> str:
    """Return the canonical string form of a UUID.

    Raises:
        ValueError: If ``value`` is not a UUID.
    """
    return str(uuid.UUID(str(value).strip()))


def member_set(values: Optional[Iterable[Any]]) -> Optional[FrozenSet[str]]:
    """Normalise a member list; ``None`` stays ``None`` (unmanaged)."""
    if values is None:
        return None
    return frozenset(parse_uuid(v) for v in values)


@dataclass(frozen=True)
class Organization:
    id: str
    name: str


@dataclass(frozen=True)
class Group:
    """A group record as returned by the Coder API."""
    id: str
    name: str
    display_name: str = ""
    avatar_url: str = ""
    quota_allowance: int = 0
    organization_id: str = ""
    members: List[str] = field(default_factory=list)
    source: str = "user"

    @property
    def member_ids(self) -> FrozenSet[str]:
        return frozenset(self.members)

    @property
    def externally_sourced(self) -> bool:
        return self.source == SOURCE_OIDC

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Group":
        members = [parse_uuid(m["id"]) for m in data.get("members") or [] if m.get("id")]
        return cls(
            id=parse_uuid(data["id"]),
            name=str(data.get("name") or ""),
            display_name=str(data.get("display_name") or ""),
            avatar_url=str(data.get("avatar_url") or ""),
            quota_allowance=int(data.get("quota_allowance") or 0),
            organization_id=parse_uuid(data["organization_id"]) if data.get("organization_id") else "",
            members=members,
            source=str(data.get("source") or "user"),
        )


@dataclass(frozen=True)
class GroupState:
    """Desired or actual snapshot of a managed group.

    ``members`` is ``None`` when membership is not managed; an empty set means
    the group must have no members.
    """
    id: Any = UNKNOWN
    name: str = ""
    display_name: Any = ""
    avatar_url: str = ""
    quota_allowance: int = 0
    organization_id: Any = UNKNOWN
    members: Optional[FrozenSet[str]] = None

    @property
    def manages_members(self) -> bool:
        return self.members is not None

    def evolve(self, **changes: Any) -> "GroupState":
        return replace(self, **changes)


def _opt(value: Any) -> Any:
    return None if is_unknown(value) else value


def state_to_dict(state: GroupState) -> Dict[str, Any]:
    """Serialise a snapshot for the state file. Unknown values become ``None``."""
    return {
        "id": _opt(state.id),
        "name": state.name,
        "display_name": _opt(state.display_name),
        "avatar_url": state.avatar_url,
        "quota_allowance": state.quota_allowance,
        "organization_id": _opt(state.organization_id),
        "members": None if state.members is None else sorted(state.members),
    }


def state_from_dict(data: Dict[str, Any]) -> GroupState:
    """Rebuild a snapshot from the state file. Missing values become :data:`UNKNOWN`."""
    gid = data.get("id")
    org = data.get("organization_id")
    display = data.get("display_name")
    return GroupState(
        id=parse_uuid(gid) if gid else UNKNOWN,
        name=str(data.get("name") or ""),
        display_name=UNKNOWN if display is None else str(display),
        avatar_url=str(data.get("avatar_url") or ""),
        quota_allowance=int(data.get("quota_allowance") or 0),
        organization_id=parse_uuid(org) if org else UNKNOWN,
        members=member_set(data.get("members")),
    )
