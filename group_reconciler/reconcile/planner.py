"""Planner: orchestrates refresh → diff → plan → apply → report for all groups.

The planner owns the state file and the desired configuration; the
:class:`GroupController` owns the remote calls for a single group. State is
saved after every step so that an interrupted run never forgets a group that
was already created.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..core.coder_client import HttpError
from ..core.errors import ReconcileError, RemoteOperationError
from ..core.logging_utils import get_logger
from ..core.models import GroupState, is_unknown
from ..core.state import StateStore
from ..utils.diff_engine import Decision, decide
from ..utils.reporting import print_or_null
from .controller import GroupController

log = get_logger(__name__)

COMPARE_KEYS = ("name", "display_name", "avatar_url", "quota_allowance", "members")
REPLACE_KEYS = ("organization_id",)


@dataclass
class PlanItem:
    """Planned operation for one group key."""
    key: str
    decision: Decision
    desired: Optional[GroupState] = None
    actual: Optional[GroupState] = None
    error: str = ""


@dataclass
class RunResult:
    """Aggregate result of a plan or apply run."""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    any_error: bool = False


def canon(state: GroupState) -> Dict[str, Any]:
    """Return the comparable subset of a snapshot. Unknown or unmanaged values are ``None``."""
    def opt(v: Any) -> Any:
        return None if is_unknown(v) else v

    return {
        "name": state.name,
        "display_name": opt(state.display_name),
        "avatar_url": state.avatar_url,
        "quota_allowance": state.quota_allowance,
        "organization_id": opt(state.organization_id),
        "members": None if state.members is None else sorted(state.members),
    }


def _describe(changes: Optional[Dict[str, Any]]) -> str:
    if not changes:
        return ""
    return "; ".join(
        f"{k}: {print_or_null(old)} -> {print_or_null(new)}" for k, (old, new) in changes.items()
    )


def _is_gone(exc: RemoteOperationError) -> bool:
    return isinstance(exc.cause, HttpError) and exc.cause.not_found


class Planner:
    """Plan and apply desired groups against the state file."""

    def __init__(self, controller: GroupController, store: StateStore) -> None:
        self.controller = controller
        self.store = store

    # ----- plan -----------------------------------------------------------
    def plan(self, desired: Dict[str, GroupState]) -> List[PlanItem]:
        """Refresh every known group and decide what to do with each key.

        Desired keys come first in configuration order, followed by keys that
        only exist in the state file (planned for deletion).
        """
        items: List[PlanItem] = []
        keys = list(desired) + [k for k in self.store.keys() if k not in desired]

        for key in keys:
            want = desired.get(key)
            prior = self.store.get(key)
            actual: Optional[GroupState] = None

            if prior is not None:
                if want is not None and want.manages_members and prior.members is None:
                    prior = prior.evolve(members=frozenset())
                try:
                    actual = self.controller.read(prior)
                except RemoteOperationError as exc:
                    if not _is_gone(exc):
                        items.append(PlanItem(key, Decision(op="NOOP", reason="Refresh failed"), want, None, str(exc)))
                        continue
                    log.warning("group %s (%s) no longer exists remotely", key, prior.id)
                    if want is None:
                        items.append(PlanItem(key, Decision(op="DELETE", reason="Already deleted"), None, prior))
                        continue
                except ReconcileError as exc:
                    items.append(PlanItem(key, Decision(op="NOOP", reason="Refresh failed"), want, None, str(exc)))
                    continue

            if want is not None and actual is not None:
                if not want.manages_members:
                    actual = actual.evolve(members=None)
                if is_unknown(want.organization_id):
                    want = want.evolve(organization_id=actual.organization_id)
                want = want.evolve(id=actual.id)

            decision = decide(
                canon(want) if want is not None else None,
                canon(actual) if actual is not None else None,
                compare_keys=COMPARE_KEYS,
                replace_keys=REPLACE_KEYS,
            )
            items.append(PlanItem(key, decision, want, actual))
        return items

    # ----- apply ----------------------------------------------------------
    def apply(self, items: Iterable[PlanItem], dry_run: bool = False) -> RunResult:
        """Execute a plan. In dry-run, only report it."""
        result = RunResult()
        for item in items:
            row = self._row(item)
            if item.error:
                row.update({"status": "Failed", "error": item.error})
                result.any_error = True
                result.rows.append(row)
                continue

            if dry_run:
                row["status"] = "planned"
                result.rows.append(row)
                continue

            try:
                state = self._apply_one(item)
                row["status"] = "Success"
                if state is not None:
                    row["id"] = state.id
            except RemoteOperationError as exc:
                if exc.partial_state is not None:
                    self.store.put(item.key, exc.partial_state)
                    row["id"] = exc.partial_state.id
                row.update({"status": "Failed", "error": str(exc)})
                result.any_error = True
            except ReconcileError as exc:
                row.update({"status": "Failed", "error": str(exc)})
                result.any_error = True
            finally:
                self.store.save()
            result.rows.append(row)
        return result

    def _apply_one(self, item: PlanItem) -> Optional[GroupState]:
        op = item.decision.op
        key = item.key

        if op == "NOOP":
            if item.actual is not None:
                self.store.put(key, item.actual)
            return item.actual

        if op in ("DELETE", "REPLACE"):
            if item.actual is not None:
                self.controller.delete(item.actual)
            self.store.remove(key)
            if op == "DELETE":
                return None

        if op in ("CREATE", "REPLACE"):
            state = self.controller.create(item.desired)
            self.store.put(key, state)
            return state

        if op == "UPDATE":
            state = self.controller.update(item.desired)
            self.store.put(key, state)
            return state

        raise ReconcileError(f"unknown operation {op}")  # pragma: no cover

    @staticmethod
    def _row(item: PlanItem) -> Dict[str, Any]:
        ref = item.desired or item.actual
        gid = item.actual.id if item.actual is not None else None
        return {
            "key": item.key,
            "name": ref.name if ref is not None else "",
            "id": None if gid is None or is_unknown(gid) else gid,
            "result": item.decision.op.lower(),
            "action": item.decision.reason,
            "changes": _describe(item.decision.changes),
        }

    # ----- import / destroy -------------------------------------------------
    def import_group(self, key: str, identifier: str, configured_keys: Iterable[str]) -> RunResult:
        """Adopt an existing group under ``key`` and populate its state.

        ``key`` must be one of ``configured_keys``; otherwise the next apply
        would delete the group that was just adopted.
        """
        if key not in set(configured_keys):
            raise ReconcileError(f"Resource {key!r} is not declared in the groups file; add it before importing")
        if key in self.store:
            raise ReconcileError(f"Resource {key!r} is already managed (id={self.store.get(key).id})")
        state = self.controller.import_state(identifier)
        state = self.controller.read(state)
        self.store.put(key, state)
        self.store.save()
        return RunResult(rows=[{
            "key": key,
            "name": state.name,
            "id": state.id,
            "result": "import",
            "action": f"Imported {identifier}",
            "status": "Success",
        }])

    def destroy(self, keys: Optional[Iterable[str]] = None) -> RunResult:
        """Delete the given keys (all managed groups by default)."""
        selected = list(keys) if keys else self.store.keys()
        items: List[PlanItem] = []
        result = RunResult()
        for key in selected:
            prior = self.store.get(key)
            if prior is None:
                result.rows.append({
                    "key": key, "result": "delete", "action": "Not managed",
                    "status": "Failed", "error": f"{key} is not in the state file",
                })
                result.any_error = True
                continue
            items.append(PlanItem(key, Decision(op="DELETE", reason="Destroy requested"), None, prior))
        applied = self.apply(items)
        result.rows.extend(applied.rows)
        result.any_error = result.any_error or applied.any_error
        return result
