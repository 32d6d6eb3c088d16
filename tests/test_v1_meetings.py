import threading
import time

import pytest
from fastapi.testclient import TestClient

from meetings_worker.app import create_app


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("WORKER_DB_PATH", str(tmp_path / "worker.db"))
    return TestClient(create_app())


WEBHOOK = {
    "data": [
        {"meeting_id": "m1", "topic": "Discovery", "start_time": "2024-01-10T15:00:00Z", "duration": 45},
        {"meeting_id": "m2", "topic": "Demo", "start_time": "2024-02-10T15:00:00Z"},
        {"meeting_id": "m3", "topic": "No time"},
    ]
}


def test_ingest_normalizes_and_merges(client):
    r = client.post("/v1/meetings/ingest/webhook", json=WEBHOOK)
    assert r.status_code == 200
    body = r.json()
    assert body["received"] == 3
    assert body["normalized"] == 2
    assert body["dropped"] == 1
    assert body["total"] == 2
    assert body["guard_fired"] is False

    listed = client.get("/v1/meetings").json()
    assert [m["id"] for m in listed["meetings"]] == ["m2", "m1"]
    assert listed["meetings"][1]["duration"] == 45
    assert "raw" not in listed["meetings"][0]


def test_empty_ingest_does_not_erase(client):
    client.post("/v1/meetings/ingest/webhook", json=WEBHOOK)
    r = client.post("/v1/meetings/ingest/proxy", json={"items": []})
    assert r.status_code == 200
    assert r.json()["guard_fired"] is True
    assert r.json()["total"] == 2

    r = client.post("/v1/meetings/ingest/proxy", content=b"")
    assert r.json()["total"] == 2

    diag = client.get("/v1/meetings/diagnostics").json()
    assert diag["observer"]["events"]["guard_fired"] == 2
    assert diag["observer"]["dropped_records"] == 1


def test_invalid_json_body_is_rejected(client):
    r = client.post("/v1/meetings/ingest/proxy", content=b"{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["ok"] is False


def test_transcript_ingest_and_grouping(client):
    client.post("/v1/meetings/ingest/fathom", json=[{"id": "f1", "startedAt": "2024-03-01"}])
    r = client.post("/v1/meetings/transcript", json={"text": "First part.\n\nSecond part."})
    assert r.status_code == 200
    assert r.json()["normalized"] == 2

    grouped = client.get("/v1/meetings/grouped").json()
    assert grouped["counts"] == {"manual": 2, "fathom": 1}


def test_transcript_requires_text(client):
    r = client.post("/v1/meetings/transcript", json={"text": ""})
    assert r.status_code == 422
    assert r.json()["ok"] is False


def test_range_filter(client):
    client.post("/v1/meetings/ingest/webhook", json=WEBHOOK)
    r = client.get("/v1/meetings", params={"from": "2024-01-10T15:00:00Z", "to": "2024-01-31T00:00:00Z"})
    assert [m["id"] for m in r.json()["meetings"]] == ["m1"]

    r = client.get("/v1/meetings", params={"from": "2024-01-01"})
    assert r.status_code == 400


def test_snapshot_survives_restart(tmp_path, monkeypatch):
    monkeypatch.setenv("WORKER_DB_PATH", str(tmp_path / "worker.db"))
    first = TestClient(create_app())
    first.post("/v1/meetings/ingest/webhook", json=WEBHOOK)

    second = TestClient(create_app())
    listed = second.get("/v1/meetings").json()
    assert [m["id"] for m in listed["meetings"]] == ["m2", "m1"]


def test_refresh_without_sources(client):
    r = client.post("/v1/meetings/refresh")
    assert r.status_code == 400
    assert "WORKER_MEETING_SOURCES" in r.json()["error"]


def test_refresh_runs_pipeline(client, monkeypatch):
    from meetings_worker.services import backend_client

    def fake_fetch(self, url):
        if url.endswith("/down"):
            raise backend_client.BackendError("HTTP 503: unavailable", status=503)
        return {"meetings": [{"id": "p1", "startedAt": "2099-01-01T00:00:00Z"}]}

    monkeypatch.setattr(backend_client.BackendClient, "fetch_json", fake_fetch)
    client.app.state.settings.meeting_sources = "fathom=http://proxy/meetings,summary=http://proxy/down"
    body = client.post("/v1/meetings/refresh").json()
    assert body["diagnostics"]["counts"]["fathom"] == 1
    assert body["diagnostics"]["errors"] == {"summary": "HTTP 503: unavailable"}
    # 2099 lies outside the rolling window
    assert body["reason"] == "date_window_miss"
    assert body["zero_state"]["title"] == "No Meetings in Date Range"
    assert client.get("/v1/meetings").json()["count"] == 1


def test_refresh_reads_every_proxy_page(client, monkeypatch):
    from meetings_worker.services import backend_client

    pages = {
        "http://proxy/meetings": {
            "meetings": [{"id": "p1", "startedAt": "2099-01-01T00:00:00Z"}],
            "nextPageToken": "t2",
        },
        "http://proxy/meetings?pageToken=t2": {
            "meetings": [{"id": "p2", "startedAt": "2099-01-02T00:00:00Z"}],
        },
    }

    def fake_fetch(self, url):
        return pages[url]

    monkeypatch.setattr(backend_client.BackendClient, "fetch_json", fake_fetch)
    client.app.state.settings.meeting_sources = "fathom=http://proxy/meetings"
    body = client.post("/v1/meetings/refresh").json()
    assert body["diagnostics"]["counts"]["fathom"] == 2
    assert client.get("/v1/meetings").json()["count"] == 2


def test_ingest_waiting_on_merge_lock_leaves_server_responsive(tmp_path, monkeypatch):
    monkeypatch.setenv("WORKER_DB_PATH", str(tmp_path / "worker.db"))
    with TestClient(create_app()) as shared:
        lock = shared.app.state.state.meetings.lock
        results = {}

        def ingest():
            results["ingest"] = shared.post("/v1/meetings/ingest/webhook", json=WEBHOOK)

        def health():
            results["health"] = shared.get("/health")

        lock.acquire()
        try:
            writer = threading.Thread(target=ingest, daemon=True)
            writer.start()
            time.sleep(0.2)
            checker = threading.Thread(target=health, daemon=True)
            checker.start()
            checker.join(timeout=2)
            assert not checker.is_alive()
            assert results["health"].status_code == 200
            assert "ingest" not in results
        finally:
            lock.release()
        writer.join(timeout=5)
        assert results["ingest"].status_code == 200
        assert results["ingest"].json()["total"] == 2
