import json

import pytest


@pytest.fixture()
def json_store(monkeypatch, tmp_path):
    import kart_manager.datastore_json as js

    monkeypatch.delenv("DATABASE_URL", raising=False)
    path = tmp_path / "nested" / "store.json"
    monkeypatch.setenv("KART_STORE_PATH", str(path))
    return js, path


def test_missing_file_reads_as_empty(json_store):
    js, path = json_store
    assert js.load_event() is None
    assert js.list_sessions() == []
    assert not path.exists()


def test_event_roundtrip_and_delete(json_store):
    js, path = json_store
    state = {"current_round": "race1", "drivers": [{"id": "a"}]}
    js.save_event(state)
    assert js.load_event() == state
    assert json.loads(path.read_text())["event"] == state

    js.delete_event()
    assert js.load_event() is None
    assert path.exists()


def test_sessions_newest_first_and_delete(json_store):
    js, _ = json_store
    js.save_session({"id": "s1", "created_at": "2025-01-01T00:00:00Z"})
    js.save_session({"id": "s2", "created_at": "2025-02-01T00:00:00Z"})
    js.save_session({"id": "s1", "created_at": "2025-01-01T00:00:00Z", "name": "renamed"})
    assert [s["id"] for s in js.list_sessions()] == ["s2", "s1"]
    assert js.get_session("s1")["name"] == "renamed"
    assert js.delete_session("s1") is True
    assert js.delete_session("s1") is False
    assert js.get_session("s1") is None


def test_proxy_uses_json_without_database_url(json_store):
    from kart_manager import datastore

    js, path = json_store
    assert datastore.backend_name() == "json"
    datastore.save_event({"current_round": "qualification"})
    assert js.load_event() == {"current_round": "qualification"}
    assert datastore.check_connection() == {"path": str(path), "exists": True}


def test_app_runs_on_json_store(json_store):
    from kart_manager import create_app

    _, path = json_store
    app = create_app()
    app.config.update({"TESTING": True})
    with app.test_client() as client:
        res = client.post("/api/event/setup", json={"category": "below", "drivers": ["A", "B"], "kart_numbers": "1 2"})
        assert res.status_code == 201
    assert json.loads(path.read_text())["event"]["current_round"] == "qualification"


def test_concurrent_event_and_session_saves_keep_both(json_store):
    import threading

    js, _ = json_store
    errors = []

    def save_events():
        try:
            for i in range(40):
                js.save_event({"current_round": "race1", "n": i})
        except Exception as e:  # surfaced below
            errors.append(e)

    def save_sessions():
        try:
            for i in range(40):
                js.save_session({"id": f"s{i}", "created_at": f"2025-01-01T00:00:{i:02d}Z"})
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=save_events), threading.Thread(target=save_sessions)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert js.load_event() == {"current_round": "race1", "n": 39}
    assert len(js.list_sessions()) == 40
