"""Tests for the 115 web API client."""

import httpx
import pytest

from sharesync.cloud115 import (
    ROOT_HANDLE,
    Cloud115Client,
    ShareReference,
    parse_share_link,
)
from sharesync.config import Cloud115Config
from sharesync.errors import RemoteRejected, RemoteUnavailable, ShareInvalid

from conftest import demo_files, form_of


class TestParseShareLink:
    def test_plain_link(self):
        share = parse_share_link("https://115.com/s/sw3abcd")
        assert share == ShareReference("sw3abcd", "")

    def test_password_query(self):
        share = parse_share_link("https://115.com/s/sw3abcd?password=x1y2#")
        assert share == ShareReference("sw3abcd", "x1y2")

    def test_password_fragment(self):
        share = parse_share_link("https://115cdn.com/s/sw3abcd#k9k9")
        assert share == ShareReference("sw3abcd", "k9k9")

    def test_explicit_password_wins(self):
        share = parse_share_link("https://anxia.com/s/sw3abcd?password=aaaa", password="bbbb")
        assert share.receive_code == "bbbb"

    def test_link_inside_text(self):
        share = parse_share_link("Season 1 https://115.com/s/swzz9?password=ab12 enjoy")
        assert share == ShareReference("swzz9", "ab12")

    def test_short_host(self):
        assert parse_share_link("https://115.me/s/abc123").share_code == "abc123"

    def test_not_a_share_link(self):
        assert parse_share_link("https://example.com/s/abc") is None
        assert parse_share_link("abc123") is None


class TestListDirectory:
    def test_lists_dirs_and_files_in_order(self, fake_115, make_client):
        movies = fake_115.add_folder(ROOT_HANDLE, "Movies")
        fid = fake_115.add_file(ROOT_HANDLE, "readme.txt")

        entries = make_client().list_directory(ROOT_HANDLE)

        assert [(e.name, e.handle, e.is_directory) for e in entries] == [
            ("Movies", movies, True),
            ("readme.txt", fid, False),
        ]

    def test_paginates(self, fake_115, make_client, make_config):
        for i in range(5):
            fake_115.add_folder(ROOT_HANDLE, f"d{i}")
        config = make_config(cloud115=Cloud115Config(page_size=2))

        entries = make_client(config).list_directory(ROOT_HANDLE)

        assert [e.name for e in entries] == ["d0", "d1", "d2", "d3", "d4"]
        list_requests = [r for r in fake_115.requests if r.url.path == "/files"]
        assert len(list_requests) == 3

    def test_short_pages_follow_reported_count(self, fake_115, make_client):
        for i in range(5):
            fake_115.add_folder(ROOT_HANDLE, f"d{i}")
        fake_115.max_page = 2

        entries = make_client().list_directory(ROOT_HANDLE)

        assert [e.name for e in entries] == ["d0", "d1", "d2", "d3", "d4"]

    def test_short_page_without_count_ends_listing(self, make_config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"state": True, "data": [{"cid": "7", "n": "only"}]})

        config = make_config(cloud115=Cloud115Config(page_size=2))
        client = Cloud115Client(config, "c", transport=httpx.MockTransport(handler))

        assert [e.name for e in client.list_directory(ROOT_HANDLE)] == ["only"]
        assert len(seen) == 1

    def test_sends_cookie_header(self, fake_115, make_client):
        make_client(cookie="UID=abc").list_directory(ROOT_HANDLE)
        assert fake_115.requests[0].headers["Cookie"] == "UID=abc"

    def test_refused_listing(self, make_client):
        with pytest.raises(RemoteRejected):
            make_client().list_directory("999999")


class TestErrorMapping:
    def _client(self, make_config, handler):
        return Cloud115Client(make_config(), "c", transport=httpx.MockTransport(handler))

    def test_server_error_is_unavailable(self, make_config):
        client = self._client(make_config, lambda req: httpx.Response(502))
        with pytest.raises(RemoteUnavailable):
            client.list_directory(ROOT_HANDLE)

    def test_transport_error_is_unavailable(self, make_config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = self._client(make_config, handler)
        with pytest.raises(RemoteUnavailable):
            client.list_directory(ROOT_HANDLE)

    def test_timeout_is_unavailable(self, make_config):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = self._client(make_config, handler)
        with pytest.raises(RemoteUnavailable):
            client.get_share_snapshot(ShareReference("abc"))

    def test_client_error_is_rejected(self, make_config):
        client = self._client(make_config, lambda req: httpx.Response(405))
        with pytest.raises(RemoteRejected) as exc_info:
            client.create_directory(ROOT_HANDLE, "x")
        assert exc_info.value.errno == 405

    def test_html_body_is_rejected(self, make_config):
        client = self._client(
            make_config, lambda req: httpx.Response(200, text="<html>login</html>"),
        )
        with pytest.raises(RemoteRejected):
            client.list_directory(ROOT_HANDLE)

    def test_redirect_is_rejected(self, make_config):
        client = self._client(
            make_config,
            lambda req: httpx.Response(302, headers={"Location": "https://115.com/login"}),
        )
        with pytest.raises(RemoteRejected):
            client.list_directory(ROOT_HANDLE)

    def test_unavailable_is_not_rejected(self):
        assert not issubclass(RemoteUnavailable, RemoteRejected)


class TestCreateDirectory:
    def test_creates_under_parent(self, fake_115, make_client):
        handle = make_client().create_directory(ROOT_HANDLE, "TV")
        assert fake_115.created == [(ROOT_HANDLE, "TV")]
        assert fake_115.parents[handle] == (ROOT_HANDLE, "TV")

    def test_refusal(self, make_config):
        def handler(request):
            return httpx.Response(200, json={"state": False, "error": "name exists", "errno": 20004})

        client = Cloud115Client(make_config(), "c", transport=httpx.MockTransport(handler))
        with pytest.raises(RemoteRejected) as exc_info:
            client.create_directory(ROOT_HANDLE, "TV")
        assert "name exists" in str(exc_info.value)
        assert exc_info.value.errno == 20004


class TestGetFolderPath:
    def test_returns_names_root_down(self, fake_115, make_client):
        tv = fake_115.add_folder(ROOT_HANDLE, "TV")
        show = fake_115.add_folder(tv, "Show")
        assert make_client().get_folder_path(show) == ["TV", "Show"]

    def test_accepts_single_name_payload(self, make_config):
        client = Cloud115Client(
            make_config(), "c",
            transport=httpx.MockTransport(lambda req: httpx.Response(200, json={"name": "Downloads"})),
        )
        assert client.get_folder_path("55") == ["Downloads"]

    def test_unexpected_entries_are_rejected(self, make_config):
        client = Cloud115Client(
            make_config(), "c",
            transport=httpx.MockTransport(
                lambda req: httpx.Response(200, json={"state": True, "data": ["TV", "Show"]}),
            ),
        )
        with pytest.raises(RemoteRejected):
            client.get_folder_path("55")


class TestShareSnapshot:
    def test_reads_title_and_files(self, fake_115, make_client):
        fake_115.add_share("abc", "Demo", demo_files())

        snapshot = make_client().get_share_snapshot(ShareReference("abc"))

        assert snapshot.title == "Demo"
        assert snapshot.file_ids == ["f1", "f2"]
        assert snapshot.files[0].file_name == "ep1.mkv"
        assert snapshot.files[0].file_size == 1000

    def test_paginates(self, fake_115, make_client, make_config):
        files = [{"fid": f"f{i}", "n": f"ep{i}.mkv", "s": 1} for i in range(5)]
        fake_115.add_share("abc", "Demo", files)
        config = make_config(cloud115=Cloud115Config(page_size=2))

        snapshot = make_client(config).get_share_snapshot(ShareReference("abc"))

        assert snapshot.file_ids == ["f0", "f1", "f2", "f3", "f4"]

    def test_short_pages_follow_reported_count(self, fake_115, make_client):
        files = [{"fid": f"f{i}", "n": f"ep{i}.mkv", "s": 1} for i in range(5)]
        fake_115.add_share("abc", "Demo", files)
        fake_115.max_page = 2

        snapshot = make_client().get_share_snapshot(ShareReference("abc"))

        assert snapshot.file_ids == ["f0", "f1", "f2", "f3", "f4"]
        snap_requests = [r for r in fake_115.requests if r.url.path == "/share/snap"]
        assert len(snap_requests) == 3

    def test_missing_size_is_unknown(self, fake_115, make_client):
        fake_115.add_share("abc", "Demo", [{"fid": "f1", "n": "a.mkv"}])
        snapshot = make_client().get_share_snapshot(ShareReference("abc"))
        assert snapshot.files[0].file_size == 0

    def test_wrong_password_is_invalid(self, fake_115, make_client):
        fake_115.add_share("abc", "Demo", demo_files(), receive_code="pw12")
        with pytest.raises(ShareInvalid) as exc_info:
            make_client().get_share_snapshot(ShareReference("abc", "nope"))
        assert exc_info.value.errno == 4100012

    def test_unknown_share_is_invalid(self, make_client):
        with pytest.raises(ShareInvalid):
            make_client().get_share_snapshot(ShareReference("gone"))

    def test_sends_receive_code(self, fake_115, make_client):
        fake_115.add_share("abc", "Demo", demo_files(), receive_code="pw12")
        make_client().get_share_snapshot(ShareReference("abc", "pw12"))
        params = fake_115.requests[0].url.params
        assert params["share_code"] == "abc"
        assert params["receive_code"] == "pw12"


class TestImportFiles:
    def test_empty_selection_makes_no_request(self, fake_115, make_client):
        count = make_client().import_files(ShareReference("abc"), ROOT_HANDLE, set())
        assert count == 0
        assert fake_115.requests == []

    def test_posts_ids_and_target(self, fake_115, make_client):
        fake_115.add_share("abc", "Demo", demo_files(), receive_code="pw")
        target = fake_115.add_folder(ROOT_HANDLE, "Inbox")

        count = make_client().import_files(ShareReference("abc", "pw"), target, {"f2", "f1"})

        assert count == 2
        form = form_of(fake_115.requests[-1])
        assert form["cid"] == target
        assert form["share_code"] == "abc"
        assert form["receive_code"] == "pw"
        assert form["file_id"] == "f1,f2"

    def test_refusal_is_rejected(self, fake_115, make_client):
        fake_115.receive_error = {"error": "quota exceeded", "errno": 4200045}
        with pytest.raises(RemoteRejected) as exc_info:
            make_client().import_files(ShareReference("abc"), ROOT_HANDLE, ["f1"])
        assert "quota" in str(exc_info.value)
