"""Shared test fixtures for sharesync tests."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from sharesync import db
from sharesync.cloud115 import Cloud115Client
from sharesync.config import Cloud115Config, Config


class FakeCloud115:
    """In-memory stand-in for the 115 web API, served through httpx.MockTransport."""

    def __init__(self):
        self.folders: dict[str, list[dict]] = {"0": []}
        self.parents: dict[str, tuple[str, str]] = {}
        self.shares: dict[str, dict] = {}
        self.created: list[tuple[str, str]] = []
        self.received: list[tuple[str, str, list[str]]] = []
        self.requests: list[httpx.Request] = []
        self.receive_error: dict | None = None
        self.on_receive = None
        self.max_page: int | None = None  # serve pages shorter than the requested limit
        self._next_id = 1000

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    # --- Setup helpers ---

    def add_folder(self, parent: str, name: str) -> str:
        handle = self._new_id()
        self.folders[parent].append({"cid": handle, "pid": parent, "n": name})
        self.folders[handle] = []
        self.parents[handle] = (parent, name)
        return handle

    def add_file(self, parent: str, name: str, size: int = 1) -> str:
        fid = self._new_id()
        self.folders[parent].append({"fid": fid, "cid": parent, "n": name, "s": size})
        return fid

    def add_share(self, code: str, title: str, files: list[dict], receive_code: str = "") -> None:
        self.shares[code] = {"title": title, "receive_code": receive_code, "files": list(files)}

    def add_share_file(self, code: str, fid: str, name: str, size: int = 1000) -> None:
        self.shares[code]["files"].append({"fid": fid, "n": name, "s": size})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def receive_calls(self) -> int:
        return len(self.received)

    # --- Request routing ---

    def _page_window(self, params) -> tuple[int, int]:
        offset, limit = int(params.get("offset", 0)), int(params.get("limit", 1000))
        if self.max_page is not None:
            limit = min(limit, self.max_page)
        return offset, limit

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()} if request.content else {}

        if request.method == "GET" and path == "/files":
            items = self.folders.get(params["cid"])
            if items is None:
                return httpx.Response(200, json={"state": False, "error": "folder missing"})
            offset, limit = self._page_window(params)
            return httpx.Response(200, json={
                "state": True, "count": len(items), "data": items[offset:offset + limit],
            })

        if request.method == "POST" and path == "/files/add":
            handle = self.add_folder(form["pid"], form["cname"])
            self.created.append((form["pid"], form["cname"]))
            return httpx.Response(200, json={"state": True, "cid": handle, "file_name": form["cname"]})

        if request.method == "GET" and path == "/files/getid":
            cid = params["cid"]
            if cid not in self.parents:
                return httpx.Response(200, json={"state": False, "error": "no such folder"})
            names = []
            while cid in self.parents:
                cid, name = self.parents[cid]
                names.insert(0, {"name": name})
            return httpx.Response(200, json={"state": True, "data": names})

        if request.method == "GET" and path == "/share/snap":
            share = self.shares.get(params["share_code"])
            if share is None or share["receive_code"] != params.get("receive_code", ""):
                return httpx.Response(200, json={
                    "state": False, "error": "share expired or wrong code", "errno": 4100012,
                })
            offset, limit = self._page_window(params)
            return httpx.Response(200, json={"state": True, "data": {
                "shareinfo": {"share_title": share["title"]},
                "count": len(share["files"]),
                "list": share["files"][offset:offset + limit],
            }})

        if request.method == "POST" and path == "/webapi/share/receive":
            if self.receive_error is not None:
                return httpx.Response(200, json={"state": False, **self.receive_error})
            ids = form["file_id"].split(",")
            self.received.append((form["share_code"], form["cid"], ids))
            if self.on_receive is not None:
                self.on_receive(form["share_code"], ids)
            return httpx.Response(200, json={"state": True, "data": {}})

        return httpx.Response(404, text="not found")


def demo_files():
    return [
        {"fid": "f1", "n": "ep1.mkv", "s": 1000},
        {"fid": "f2", "n": "ep2.mkv", "s": 1000},
    ]


@pytest.fixture
def fake_115():
    return FakeCloud115()


@pytest.fixture
def db_path(tmp_path):
    """Initialize a real SQLite database using schema.sql and return its path."""
    path = tmp_path / "test.db"
    db.init_db(path)
    return path


@pytest.fixture
def db_conn(db_path):
    """Yield a database connection with row factory set."""
    with db.get_db(db_path) as conn:
        yield conn


@pytest.fixture
def make_config(tmp_path):
    """Factory fixture that creates Config instances with tmp paths."""
    def _make_config(**overrides):
        defaults = {
            "db_path": tmp_path / "test.db",
            "cloud115": Cloud115Config(cookie="UID=test; CID=test"),
        }
        defaults.update(overrides)
        return Config(**defaults)
    return _make_config


@pytest.fixture
def make_client(make_config, fake_115):
    """Factory fixture returning a Cloud115Client wired to the fake API."""
    clients = []

    def _make_client(config: Config | None = None, cookie: str = "UID=test; CID=test"):
        client = Cloud115Client(config or make_config(), cookie, transport=fake_115.transport())
        clients.append(client)
        return client

    yield _make_client
    for client in clients:
        client.close()


def form_of(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def json_of(request: httpx.Request) -> dict:
    return json.loads(request.content)
