"""
Diff engine for the group reconciler.

Two pieces live here:

* :func:`member_diff`: set reconciliation for group membership.
* :func:`decide`: a minimal decision model that says whether a managed group
  should be created, replaced, updated, or left as-is (NOOP) based on a subset
  comparison between **desired** and **actual** snapshots.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

Op = Literal["NOOP", "CREATE", "UPDATE", "REPLACE", "DELETE"]


def member_diff(current: Iterable[str], desired: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Return ``(to_add, to_remove)`` turning ``current`` into ``desired``.

    ``to_add`` is desired minus current, ``to_remove`` is current minus
    desired. Each list keeps the order in which IDs first appear in its input
    and holds no duplicates. Never call this for unmanaged membership.
    """
    cur = list(dict.fromkeys(current))
    want = list(dict.fromkeys(desired))
    cur_set = set(cur)
    want_set = set(want)

    to_add = [m for m in want if m not in cur_set]
    to_remove = [m for m in cur if m not in want_set]
    return to_add, to_remove


@dataclass(frozen=True)
class Decision:
    """Represents a diff outcome for a single managed group.

    Attributes:
        op: One of ``"NOOP"``, ``"CREATE"``, ``"UPDATE"``, ``"REPLACE"`` or ``"DELETE"``.
        reason: Human-friendly explanation of the decision.
        changes: ``field -> (actual, desired)`` for every differing field.
    """
    op: Op
    reason: str
    changes: Optional[Dict[str, Tuple[Any, Any]]] = None


def decide(
    desired: Optional[Dict[str, Any]],
    existing: Optional[Dict[str, Any]],
    *,
    compare_keys: Sequence[str],
    replace_keys: Sequence[str] = (),
) -> Decision:
    """Compute a :class:`Decision` from desired vs existing canonical dicts.

    The comparison is limited to ``compare_keys`` so server-managed fields are
    ignored. A difference on any of ``replace_keys`` forces ``REPLACE``; a key
    whose desired value is ``None`` is not compared.
    """
    if desired is None:
        return Decision(op="DELETE", reason="Not in configuration")
    if existing is None:
        return Decision(op="CREATE", reason="Not found")

    for k in replace_keys:
        want = desired.get(k)
        if want is not None and want != existing.get(k):
            return Decision(
                op="REPLACE",
                reason=f"Field requires replacement: {k}",
                changes={k: (existing.get(k), want)},
            )

    changes: Dict[str, Tuple[Any, Any]] = {}
    for k in compare_keys:
        want = desired.get(k)
        if want is None:
            continue
        if want != existing.get(k):
            changes[k] = (existing.get(k), want)

    if changes:
        return Decision(op="UPDATE", reason="Field differs: " + ", ".join(changes), changes=changes)
    return Decision(op="NOOP", reason="Identical subset")
