import json

import pytest

from group_reconciler.core.models import UNKNOWN, GroupState
from group_reconciler.core.state import STATE_VERSION, StateError, StateStore

GID = "aaaaaaaa-0000-4000-8000-000000000001"
ORG = "0a1b2c3d-0000-4000-8000-000000000001"
U1 = "11111111-1111-1111-1111-111111111111"
U2 = "22222222-2222-2222-2222-222222222222"


def test_missing_file_loads_empty(tmp_path):
    store = StateStore.load(tmp_path / "state.json")
    assert len(store) == 0
    assert store.get("devs") is None


def test_save_and_reload(tmp_path):
    path = tmp_path / "nested" / "state.json"
    store = StateStore.load(path)
    store.put("devs", GroupState(
        id=GID, name="devs", display_name="Developers", quota_allowance=2,
        organization_id=ORG, members=frozenset({U2, U1}),
    ))
    store.put("readers", GroupState(id=GID, name="readers", organization_id=ORG))
    store.save()

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["version"] == STATE_VERSION
    assert raw["resources"]["devs"]["members"] == [U1, U2]
    assert raw["resources"]["readers"]["members"] is None
    assert list(tmp_path.joinpath("nested").iterdir()) == [path]

    again = StateStore.load(path)
    assert again.keys() == ["devs", "readers"]
    assert again.get("devs") == store.get("devs")
    assert again.get("readers").members is None


def test_unknown_values_survive_as_unknown(tmp_path):
    path = tmp_path / "state.json"
    store = StateStore(path)
    store.put("imported", GroupState(id=GID, display_name=UNKNOWN))
    store.save()

    loaded = StateStore.load(path).get("imported")
    assert loaded.display_name is UNKNOWN
    assert loaded.organization_id is UNKNOWN


def test_remove(tmp_path):
    store = StateStore(tmp_path / "state.json")
    store.put("devs", GroupState(id=GID))
    store.remove("devs")
    store.remove("never-there")
    assert "devs" not in store


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"version": 99, "resources": {}}),
        json.dumps({"version": 1, "resources": {"devs": {"id": "not-a-uuid"}}}),
    ],
)
def test_bad_state_files(tmp_path, content):
    path = tmp_path / "state.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(StateError):
        StateStore.load(path)
