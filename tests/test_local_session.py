import json

from profilestack.local_session import (
    STORAGE_VERSION,
    JsonFileLocalStore,
    LocalSession,
    build_storage_payload,
    parse_stored_payload,
)
from profilestack.models import Profile, Skill


def test_parse_payload_from_string_and_dict():
    payload = build_storage_payload({"first_name": "Jane"})
    assert parse_stored_payload(payload) == {"first_name": "Jane"}
    assert parse_stored_payload(json.dumps(payload)) == {"first_name": "Jane"}


def test_parse_payload_rejects_junk():
    assert parse_stored_payload(None) is None
    assert parse_stored_payload("") is None
    assert parse_stored_payload("{not json") is None
    assert parse_stored_payload("[1, 2]") is None
    assert parse_stored_payload({"version": STORAGE_VERSION + 1, "profile": {}}) is None
    assert parse_stored_payload({"version": STORAGE_VERSION, "profile": "nope"}) is None


def test_file_store_round_trip_and_clear(local_path):
    store = JsonFileLocalStore(local_path)
    assert store.load() is None

    store.save({"first_name": "Jane"})
    assert store.load() == {"first_name": "Jane"}

    store.clear()
    assert store.load() is None
    store.clear()


def test_local_session_create_and_reload(local_path):
    session = LocalSession(JsonFileLocalStore(local_path))
    created = session.create("Jane", "Doe")

    assert created.id.startswith("local-")
    assert created.user_id.startswith("guest-")

    reloaded = LocalSession(JsonFileLocalStore(local_path)).load()
    assert reloaded.first_name == "Jane"
    assert reloaded.id == created.id


def test_snapshot_is_independent(local_session):
    local_session.replace(Profile(first_name="Jane", skills=[Skill(name="Python")]))

    snap = local_session.snapshot()
    snap.skills.clear()

    assert len(local_session.snapshot().skills) == 1


def test_malformed_stored_profile_is_ignored(local_path):
    with open(local_path, "w", encoding="utf-8") as f:
        # duplicate ids cannot be loaded
        json.dump(
            build_storage_payload({"skills": [{"id": "a", "name": "Python"}, {"id": "a", "name": "Go"}]}),
            f,
        )

    session = LocalSession(JsonFileLocalStore(local_path))
    assert session.load() is None
    assert not session.exists()

    # bytes that are not utf-8 at all
    with open(local_path, "wb") as f:
        f.write(b"\xff\xfe\x00garbage")
    assert LocalSession(JsonFileLocalStore(local_path)).load() is None


def test_clear_removes_everything(local_session, local_path):
    local_session.create("Jane", "Doe")
    local_session.clear()

    assert not local_session.exists()
    assert LocalSession(JsonFileLocalStore(local_path)).load() is None
