import logging
import uuid

import pytest

from group_reconciler.core.coder_client import HttpError
from group_reconciler.core.logging_utils import MaskSecretsFilter
from group_reconciler.core.models import Group, Organization
from group_reconciler.reconcile.controller import GroupController

ORG_ID = "0a1b2c3d-0000-4000-8000-000000000001"
OTHER_ORG_ID = "0a1b2c3d-0000-4000-8000-000000000002"

U1 = "11111111-1111-1111-1111-111111111111"
U2 = "22222222-2222-2222-2222-222222222222"
U3 = "33333333-3333-3333-3333-333333333333"


class FakeCoderClient:
    """In-memory stand-in for CoderClient that records every call."""

    def __init__(self):
        self.calls = []
        self.groups = {}
        self.orgs = {"default": ORG_ID, "acme": OTHER_ORG_ID}
        self.features = {"template_rbac": True}
        self.fail = {}

    def _record(self, op, **kwargs):
        self.calls.append((op, kwargs))
        if op in self.fail:
            raise self.fail[op]

    def ops(self):
        return [op for op, _ in self.calls]

    def last(self, op):
        return [kw for name, kw in self.calls if name == op][-1]

    def _not_found(self, what):
        return HttpError(status=404, url=f"fake://{what}", message="Resource not found")

    def add_group(self, name, org_id=ORG_ID, members=(), source="user", **fields):
        gid = fields.pop("id", None) or str(uuid.uuid4())
        self.groups[gid] = Group(
            id=gid, name=name, organization_id=org_id, members=list(members), source=source, **fields
        )
        return gid

    # --- client surface ---
    def create_group(self, organization_id, *, name, display_name="", avatar_url="", quota_allowance=0):
        self._record(
            "create_group", organization_id=organization_id, name=name,
            display_name=display_name, avatar_url=avatar_url, quota_allowance=quota_allowance,
        )
        gid = self.add_group(
            name, org_id=organization_id, display_name=display_name,
            avatar_url=avatar_url, quota_allowance=quota_allowance,
        )
        return self.groups[gid]

    def group(self, group_id):
        self._record("group", group_id=group_id)
        if group_id not in self.groups:
            raise self._not_found(group_id)
        return self.groups[group_id]

    def patch_group(self, group_id, **kwargs):
        self._record("patch_group", group_id=group_id, **kwargs)
        if group_id not in self.groups:
            raise self._not_found(group_id)
        g = self.groups[group_id]
        members = [m for m in g.members if m not in (kwargs.get("remove_users") or [])]
        members += [m for m in kwargs.get("add_users") or [] if m not in members]
        fields = {k: v for k, v in kwargs.items() if k not in ("add_users", "remove_users") and v is not None}
        self.groups[group_id] = Group(
            id=g.id,
            name=fields.get("name", g.name),
            display_name=fields.get("display_name", g.display_name),
            avatar_url=fields.get("avatar_url", g.avatar_url),
            quota_allowance=fields.get("quota_allowance", g.quota_allowance),
            organization_id=g.organization_id,
            members=members,
            source=g.source,
        )
        return self.groups[group_id]

    def delete_group(self, group_id):
        self._record("delete_group", group_id=group_id)
        if group_id not in self.groups:
            raise self._not_found(group_id)
        del self.groups[group_id]

    def organization_by_name(self, name):
        self._record("organization_by_name", name=name)
        if name not in self.orgs:
            raise self._not_found(name)
        return Organization(id=self.orgs[name], name=name)

    def group_by_org_and_name(self, organization_id, name):
        self._record("group_by_org_and_name", organization_id=organization_id, name=name)
        for g in self.groups.values():
            if g.organization_id == organization_id and g.name == name:
                return g
        raise self._not_found(name)

    def default_organization_id(self):
        return self.organization_by_name("default").id

    def feature_enabled(self, name):
        return self.features.get(name, False)


@pytest.fixture()
def restore_logging():
    """Drop the handlers installed by setup_logging() and restore the root level."""
    root = logging.getLogger()
    level = root.level
    yield
    for h in list(root.handlers):
        if any(isinstance(f, MaskSecretsFilter) for f in h.filters):
            root.removeHandler(h)
            h.close()
    root.setLevel(level)


@pytest.fixture()
def fake():
    return FakeCoderClient()


@pytest.fixture()
def controller(fake):
    return GroupController(fake, default_organization_id=ORG_ID)
