"""
Reporting helpers (table or JSON) for plan/apply results.

`print_rows` auto-selects relevant columns and produces a compact table that
fits CLI usage. JSON output is also supported for machine consumption.
"""
from __future__ import annotations

import json
from typing import AbstractSet, Any, Dict, List, Optional, Sequence, Union

from ..core.models import UnknownValue

Printable = Union[None, UnknownValue, bool, int, str, Sequence[str], AbstractSet[str]]


def print_or_null(value: Printable) -> str:
    """Render a plan value the way it would be written in configuration.

    ``None`` is ``null``, unknown values are ``(known after apply)``, strings
    are double-quoted and string collections become ``["a", "b"]`` (sets are
    sorted). Any other type is a caller bug and raises ``TypeError``.
    """
    if value is None:
        return "null"
    if isinstance(value, UnknownValue):
        return "(known after apply)"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else list(value)
        if not all(isinstance(v, str) for v in items):
            raise TypeError(f"unsupported collection element in {value!r}")
        return "[" + ", ".join(json.dumps(v) for v in items) + "]"
    raise TypeError(f"unknown type for plan value: {type(value).__name__}")


def _normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    r = dict(row)
    err = r.get("error")
    r["error"] = str(err).strip()[:160] if err else "—"
    r["status"] = r.get("status") or "—"
    return r


def print_rows(rows: List[Dict[str, Any]], fmt: str = "table", columns: Optional[List[str]] = None) -> None:
    """Render result rows as a table or JSON.

    Args:
        rows: List of dict rows (key, name, id, result, action, ...).
        fmt: Either ``"table"`` (default) or ``"json"``.
        columns: Optional explicit column order.
    """
    if fmt == "json":
        print(json.dumps(rows, indent=2, default=str))
        return

    norm_rows = [_normalize_row(r) for r in rows]

    def _present(v) -> bool:
        return not (v is None or v == "" or v == [] or v == "—")

    candidates = columns or ["key", "name", "id", "result", "action", "changes", "status", "error"]
    mandatory = {"key", "result", "status"}

    cols: List[str] = [
        c for c in candidates
        if c in mandatory or any(_present(r.get(c)) for r in norm_rows)
    ]

    def _fmt(v, col):
        s = "" if v is None else str(v)
        if col == "id" and len(s) > 16:
            return f"{s[:8]}…{s[-4:]}"
        return s or "—"

    widths = {c: len(c) for c in cols}
    for r in norm_rows:
        for c in cols:
            widths[c] = max(widths[c], len(_fmt(r.get(c), c)))

    header = "| " + " | ".join(c.ljust(widths[c]) for c in cols) + " |"
    sep = "| " + " | ".join("-" * widths[c] for c in cols) + " |"
    print(header)
    print(sep)
    for r in norm_rows:
        print("| " + " | ".join(_fmt(r.get(c), c).ljust(widths[c]) for c in cols) + " |")
    if not norm_rows:
        print("(no groups)")
