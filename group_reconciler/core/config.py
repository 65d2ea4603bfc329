"""
Configuration loader for the group reconciler.

This module resolves environment configuration and parses the desired groups
YAML.

Key rules:
  * `.env` (or the shell) provides CODER_URL, CODER_SESSION_TOKEN, GROUPS_FILE
  * `groups.yml` must have a top-level `groups` list
  * Each group is addressed by its `key` (defaults to its `name`); keys are unique
  * Omitting `members` leaves membership unmanaged; `members: []` empties the group
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .logging_utils import get_logger
from .models import UNKNOWN, GroupState, member_set
from ..utils.validators import (
    ValidationError,
    require_keys,
    validate_display_name,
    validate_name,
    validate_quota,
    validate_uuid,
)

log = get_logger(__name__)

_KNOWN_KEYS = {"key", "name", "display_name", "avatar_url", "quota_allowance", "organization_id", "members"}


class ConfigError(Exception):
    """Raised when runtime configuration cannot be resolved."""
    pass


@dataclass
class Config:
    """Runtime configuration resolved from `.env` and the environment."""
    coder_url: str
    session_token: str
    groups_file: Path
    state_file: Path
    default_organization_id: Optional[str] = None
    timeout_sec: float = 30.0

    @classmethod
    def from_env(cls, *, groups_file: Optional[str] = None, state_file: Optional[str] = None) -> "Config":
        """Load `.env` and build a :class:`Config` instance.

        ``groups_file`` / ``state_file`` are CLI fallbacks used when the matching
        environment variable is not set.

        Raises:
            ConfigError: If required environment variables are missing or invalid.
        """
        env_path = find_dotenv(usecwd=True) or ""
        if env_path:
            load_dotenv(env_path, override=False)

        coder_url = os.getenv("CODER_URL")
        token = os.getenv("CODER_SESSION_TOKEN")
        groups = os.getenv("GROUPS_FILE") or groups_file

        missing = [k for k, v in {
            "CODER_URL": coder_url,
            "CODER_SESSION_TOKEN": token,
            "GROUPS_FILE": groups,
        }.items() if not v]
        if missing:
            hint = (
                "Create a .env in the working directory or export them in your shell. "
                "Example:\n"
                "  CODER_URL=https://coder.example.com\n"
                "  CODER_SESSION_TOKEN=***\n"
                "  GROUPS_FILE=./groups.yml\n"
            )
            raise ConfigError(
                "Missing required environment variables: "
                + ", ".join(missing)
                + ". " + hint
            )

        default_org = os.getenv("CODER_DEFAULT_ORGANIZATION_ID") or None
        if default_org:
            try:
                default_org = validate_uuid(default_org, "CODER_DEFAULT_ORGANIZATION_ID")
            except ValidationError as exc:
                raise ConfigError(str(exc)) from exc

        timeout = os.getenv("CODER_TIMEOUT_SEC") or "30"
        try:
            timeout_sec = float(timeout)
        except ValueError:
            raise ConfigError(f"CODER_TIMEOUT_SEC must be a number, got {timeout!r}")

        return cls(
            coder_url=coder_url,
            session_token=token,
            groups_file=Path(groups),
            state_file=Path(os.getenv("GROUPS_STATE_FILE") or state_file or "./groups.state.json"),
            default_organization_id=default_org,
            timeout_sec=timeout_sec,
        )

    def load_groups(self) -> Dict[str, GroupState]:
        """Read the groups YAML and return ``key -> desired snapshot``.

        Raises:
            ConfigError: If the file is missing or has no `groups` list.
            ValidationError: If a group block is invalid.
        """
        if not self.groups_file.is_file():
            raise ConfigError(f"Groups file not found: {self.groups_file}")
        with open(self.groups_file, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict) or "groups" not in data:
            raise ConfigError(f"{self.groups_file} must contain a top-level 'groups' list")
        return parse_groups(data.get("groups") or [])


def parse_groups(blocks: List[Any]) -> Dict[str, GroupState]:
    """Validate raw group blocks and convert them into desired snapshots."""
    if not isinstance(blocks, list):
        raise ValidationError("'groups' must be a list")

    out: Dict[str, GroupState] = {}
    for idx, block in enumerate(blocks):
        if not isinstance(block, dict):
            raise ValidationError(f"groups[{idx}] must be a mapping")
        key, state = desired_from_config(block, context=f"groups[{idx}]")
        if key in out:
            raise ValidationError(f"duplicate group key: {key}")
        out[key] = state
    log.debug("Loaded %d desired group(s)", len(out))
    return out


def desired_from_config(block: Dict[str, Any], context: Optional[str] = None) -> Tuple[str, GroupState]:
    """Convert one YAML group block into ``(key, GroupState)``."""
    require_keys(block, ("name",), context=context)
    unknown = sorted(set(block) - _KNOWN_KEYS)
    if unknown:
        log.warning("%s: ignoring unknown key(s): %s", context or "group", ", ".join(unknown))

    name = str(block["name"]).strip()
    validate_name(name, context)
    key = str(block.get("key") or name).strip()

    display_name = block.get("display_name")
    display_name = "" if display_name is None else str(display_name)
    validate_display_name(display_name, context)

    org = block.get("organization_id")
    org_id = validate_uuid(org, "organization_id", context) if org else UNKNOWN

    members = block.get("members")
    if members is not None:
        if not isinstance(members, list):
            raise ValidationError(f"{context}: members must be a list of user IDs")
        for m in members:
            validate_uuid(m, "members[]", context)

    return key, GroupState(
        name=name,
        display_name=display_name,
        avatar_url=str(block.get("avatar_url") or ""),
        quota_allowance=validate_quota(block.get("quota_allowance", 0), context),
        organization_id=org_id,
        members=member_set(members),
    )
