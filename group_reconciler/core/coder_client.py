"""
CoderClient: JSON-first HTTP client for the Coder REST API (v2).

This module provides a single, reusable HTTP client with:
  * Consistent JSON helpers (`get_json`, `post_json`, `patch_json`, `delete_json`)
  * Path builders for the group and organization endpoints
  * Typed group helpers so the controller never deals with HTTP plumbing

Only GET requests are retried (5xx and connection errors, exponential
backoff). Mutating requests are sent exactly once.

Example:
    client = CoderClient(base_url, token)
    group = client.create_group(org_id, name="devs")
"""
from __future__ import annotations

import json
import os
import time
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
import urllib3

from .logging_utils import get_logger
from .models import Group, Organization, parse_uuid

log = get_logger(__name__)

_LOG_PREVIEW = int(os.getenv("GROUPS_HTTP_PREVIEW", "600"))
_REDACT_KEYS = {"token", "session_token", "coder-session-token", "password"}

SESSION_TOKEN_HEADER = "Coder-Session-Token"


def _short_json(obj: Any, limit: int = _LOG_PREVIEW) -> str:
    if isinstance(obj, (dict, list)):
        s = json.dumps(obj, ensure_ascii=False, default=str)
    else:
        s = str(obj)
    return s[:limit]


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {
            k: "***REDACTED***" if str(k).lower() in _REDACT_KEYS else _redact(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [_redact(x) for x in obj]
    return obj


@dataclass
class HttpError(Exception):
    """HTTP/transport error with context. ``status`` is 0 for network errors."""
    status: int
    url: str
    body: str = ""
    message: str = ""

    def __str__(self) -> str:
        base = f"HttpError(status={self.status}, url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base

    @property
    def not_found(self) -> bool:
        return self.status == 404


@dataclass
class ClientOptions:
    """Runtime options for :class:`CoderClient`.

    Attributes:
        verify: If False, TLS certificate verification is disabled.
        timeout_sec: Per-request timeout (seconds).
        retries: Extra attempts for GET requests on 5xx / network errors.
        backoff_base_sec: First backoff delay, doubled on each retry.
        suppress_insecure_warning: Silence urllib3 warnings when ``verify`` is off.
    """
    verify: bool = True
    timeout_sec: float = 30
    retries: int = 2
    backoff_base_sec: float = 0.2
    suppress_insecure_warning: bool = True


class CoderClient:
    """High-level HTTP client for the Coder API.

    Args:
        base_url: Deployment URL (e.g. ``https://coder.example.com``).
        session_token: Token sent as the ``Coder-Session-Token`` header.
        options: Optional :class:`ClientOptions`.
        verify: Optional TLS verification override (wins over ``options.verify``).
    """

    def __init__(
        self,
        base_url: str,
        session_token: str,
        *,
        options: Optional[ClientOptions] = None,
        verify: Optional[bool] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update({
            SESSION_TOKEN_HEADER: session_token,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "group-reconciler/HTTPClient",
        })
        self.options = options or ClientOptions()
        if verify is not None:
            self.options.verify = bool(verify)

        if not self.options.verify and self.options.suppress_insecure_warning:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    # ---------------- low-level ----------------
    def _url(self, path: str) -> str:
        """Resolve an absolute URL from a relative *path*."""
        return f"{self.base_url}/{path.lstrip('/')}"

    def _req(self, method: str, path: str, *, json_body: Optional[Dict[str, Any]] = None) -> Any:
        """Perform an HTTP request and return the decoded JSON body (or ``{}``).

        Raises:
            HttpError: On non-2xx responses and transport failures.
        """
        url = self._url(path)
        method = method.upper()
        attempts = 1 + (max(0, int(self.options.retries)) if method == "GET" else 0)

        for attempt in range(attempts):
            last = attempt == attempts - 1
            start = time.time()
            try:
                resp = self.session.request(
                    method=method,
                    url=url,
                    json=json_body,
                    timeout=self.options.timeout_sec,
                    verify=self.options.verify,
                )
            except requests.RequestException as exc:
                log.warning("HTTP %s %s failed: %s", method, url, exc)
                if not last:
                    self._sleep_backoff(attempt)
                    continue
                raise HttpError(status=0, url=url, message=str(exc)) from exc

            elapsed = (time.time() - start) * 1000
            if resp.status_code >= 400:
                body = resp.text or ""
                log.warning("HTTP %s %s -> %s: %s", method, url, resp.status_code, body[:200])
                if resp.status_code >= 500 and not last:
                    self._sleep_backoff(attempt)
                    continue
                raise HttpError(
                    status=resp.status_code,
                    url=url,
                    body=body,
                    message=self._error_message(resp),
                )

            log.debug("HTTP %s %s -> %s in %.1fms", method, url, resp.status_code, elapsed)
            if resp.status_code == 204 or not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as exc:
                raise HttpError(status=resp.status_code, url=url, body=resp.text, message=str(exc)) from exc

        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        """Extract the human message of a Coder error payload (`message`, `detail`)."""
        try:
            data = resp.json()
        except ValueError:
            return resp.reason or ""
        if not isinstance(data, dict):
            return resp.reason or ""
        parts = [str(data.get(k)) for k in ("message", "detail") if data.get(k)]
        for v in data.get("validations") or []:
            if isinstance(v, dict):
                parts.append(f"{v.get('field')}: {v.get('detail')}")
        return "; ".join(parts) or (resp.reason or "")

    def _sleep_backoff(self, attempt: int) -> None:
        time.sleep(self.options.backoff_base_sec * (2 ** attempt))

    def get_json(self, path: str) -> Any:
        return self._req("GET", path)

    def post_json(self, path: str, data: Dict[str, Any]) -> Any:
        return self._req("POST", path, json_body=data)

    def patch_json(self, path: str, data: Dict[str, Any]) -> Any:
        return self._req("PATCH", path, json_body=data)

    def delete_json(self, path: str) -> Any:
        return self._req("DELETE", path)

    # ---------------- path builders ----------------
    @staticmethod
    def group_path(group_id: str) -> str:
        return f"api/v2/groups/{group_id}"

    @staticmethod
    def organization_path(org: str) -> str:
        return f"api/v2/organizations/{org}"

    @staticmethod
    def org_groups_path(org_id: str, name: Optional[str] = None) -> str:
        base = f"api/v2/organizations/{org_id}/groups"
        return f"{base}/{name}" if name else base

    # ---------------- group helpers ----------------
    def create_group(
        self,
        organization_id: str,
        *,
        name: str,
        display_name: str = "",
        avatar_url: str = "",
        quota_allowance: int = 0,
    ) -> Group:
        payload = {
            "name": name,
            "display_name": display_name,
            "avatar_url": avatar_url,
            "quota_allowance": int(quota_allowance),
        }
        log.debug("POST group payload=%s", _short_json(_redact(payload)))
        data = self.post_json(self.org_groups_path(organization_id), payload)
        return Group.from_api(data)

    def group(self, group_id: str) -> Group:
        return Group.from_api(self.get_json(self.group_path(group_id)))

    def patch_group(
        self,
        group_id: str,
        *,
        add_users: Optional[List[str]] = None,
        remove_users: Optional[List[str]] = None,
        name: Optional[str] = None,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        quota_allowance: Optional[int] = None,
    ) -> Group:
        """PATCH a group. Arguments left as ``None`` are not sent."""
        payload: Dict[str, Any] = {}
        if add_users is not None:
            payload["add_users"] = list(add_users)
        if remove_users is not None:
            payload["remove_users"] = list(remove_users)
        if name is not None:
            payload["name"] = name
        if display_name is not None:
            payload["display_name"] = display_name
        if avatar_url is not None:
            payload["avatar_url"] = avatar_url
        if quota_allowance is not None:
            payload["quota_allowance"] = int(quota_allowance)
        log.debug("PATCH group %s payload=%s", group_id, _short_json(_redact(payload)))
        return Group.from_api(self.patch_json(self.group_path(group_id), payload))

    def delete_group(self, group_id: str) -> None:
        self.delete_json(self.group_path(group_id))

    def organization_by_name(self, name: str) -> Organization:
        data = self.get_json(self.organization_path(name))
        return Organization(id=parse_uuid(data["id"]), name=str(data.get("name") or name))

    def group_by_org_and_name(self, organization_id: str, name: str) -> Group:
        return Group.from_api(self.get_json(self.org_groups_path(organization_id, name)))

    def default_organization_id(self) -> str:
        return self.organization_by_name("default").id

    # ---------------- entitlements ----------------
    def features(self) -> Dict[str, bool]:
        """Return ``feature name -> enabled`` from ``/api/v2/entitlements``."""
        data = self.get_json("api/v2/entitlements") or {}
        feats = data.get("features") or {}
        return {str(k): bool((v or {}).get("enabled")) for k, v in feats.items()}

    def feature_enabled(self, name: str) -> bool:
        return self.features().get(name, False)
