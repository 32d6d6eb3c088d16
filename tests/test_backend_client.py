import asyncio
import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from meetings_worker.services.aggregate import AggregationController, JobState
from meetings_worker.services.backend_client import BackendClient, BackendError, with_query


class GarbledStatusHandler(BaseHTTPRequestHandler):
    """Answers the start POST properly and every status GET with a bad status line."""

    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length") or 0))
        body = json.dumps({"ok": True, "run_id": "r1"}).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        self.wfile.write(b"GARBAGE\r\n\r\n")

    def log_message(self, format, *args):
        pass


@pytest.fixture
def garbled_server():
    server = HTTPServer(("127.0.0.1", 0), GarbledStatusHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


async def _no_sleep(_seconds):
    return None


def test_bad_status_line_is_a_backend_error(garbled_server):
    client = BackendClient(garbled_server, timeout=5)
    with pytest.raises(BackendError):
        asyncio.run(client.status("acme.com", "r1"))


def test_garbled_polls_count_against_budget(garbled_server):
    controller = AggregationController(BackendClient(garbled_server, timeout=5), max_attempts=3, sleep=_no_sleep)
    job = asyncio.run(controller.run("acme.com"))
    assert job.state is JobState.TIMED_OUT
    assert job.run_id == "r1"
    assert job.attempts == 3


def test_malformed_base_url_ends_in_error():
    controller = AggregationController(BackendClient("acme-backend.internal"), sleep=_no_sleep)
    job = asyncio.run(controller.run("acme.com"))
    assert job.state is JobState.ERROR
    assert "acme-backend.internal" in job.error


class PagedSource(BackendClient):
    def __init__(self, pages):
        super().__init__("")
        self.pages = pages
        self.requested = []

    def fetch_json(self, url):
        self.requested.append(url)
        return self.pages[url]


def test_fetch_pages_follows_next_page_token():
    base = "http://proxy/meetings?mode=read"
    source = PagedSource(
        {
            base: {"meetings": [{"id": "a"}, {"id": "b"}], "nextPageToken": "p2"},
            base + "&pageToken=p2": {"meetings": [{"id": "c"}], "nextPageToken": "p3"},
            base + "&pageToken=p3": {"meetings": [{"id": "d"}], "nextPageToken": None},
        }
    )
    records = source.fetch_pages(base)
    assert [r["id"] for r in records] == ["a", "b", "c", "d"]
    assert len(source.requested) == 3


def test_fetch_pages_single_page_and_bare_list():
    source = PagedSource({"http://proxy/list": [{"id": "x"}]})
    assert source.fetch_pages("http://proxy/list") == [{"id": "x"}]


def test_fetch_pages_rejects_repeated_token():
    base = "http://proxy/meetings"
    source = PagedSource(
        {
            base: {"meetings": [], "nextPageToken": "same"},
            base + "?pageToken=same": {"meetings": [{"id": "a"}], "nextPageToken": "same"},
        }
    )
    with pytest.raises(BackendError):
        source.fetch_pages(base)


def test_with_query_replaces_existing_token():
    url = with_query("http://proxy/m?mode=read&pageToken=old", pageToken="new")
    assert url == "http://proxy/m?mode=read&pageToken=new"
