"""115 cloud web API client (listing, folders, share snapshots, share receive)."""

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

import httpx

from .config import Config
from .errors import RemoteRejected, RemoteUnavailable, ShareInvalid

logger = logging.getLogger("sharesync.cloud115")

ROOT_HANDLE = "0"

# 115 share links: https://115.com/s/<code>?password=<pw>, also served from mirrors
SHARE_LINK_PATTERN = re.compile(
    r"https?://(?:www\.)?(?:115\.com|anxia\.com|115cdn\.com|115\.me)/s/([A-Za-z0-9]+)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ShareReference:
    share_code: str
    receive_code: str = ""


@dataclass(frozen=True)
class RemoteFile:
    file_id: str
    file_name: str
    file_size: int = 0  # 0 = unknown


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    handle: str
    is_directory: bool


@dataclass
class ShareSnapshot:
    title: str
    files: list[RemoteFile] = field(default_factory=list)

    @property
    def file_ids(self) -> list[str]:
        return [f.file_id for f in self.files]


def parse_share_link(text: str, password: str = "") -> ShareReference | None:
    """
    Extract a ShareReference from a 115 share URL.

    The receive code is taken from the ``password`` query parameter or the
    URL fragment; an explicit ``password`` argument wins over both. Returns
    None if ``text`` is not a 115 share link.
    """
    stripped = text.strip()
    match = SHARE_LINK_PATTERN.search(stripped)
    if not match:
        return None
    parsed = urlparse(stripped[match.start():].split()[0])
    receive_code = password
    if not receive_code:
        receive_code = parse_qs(parsed.query).get("password", [""])[0]
    if not receive_code and parsed.fragment:
        receive_code = parsed.fragment.strip()
    return ShareReference(share_code=match.group(1), receive_code=receive_code)


def _error_message(payload: dict, default: str) -> str:
    return str(payload.get("error") or payload.get("msg") or default)


def _error_number(payload: dict) -> int | str | None:
    return payload.get("errno") or payload.get("errNo") or payload.get("code")


def _to_int(value) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


class Cloud115Client:
    """
    Authenticated client for the 115 web API.

    The session cookie is bound to one client instance and never mutated;
    build a new client when the cookie changes. Use as a context manager so
    the underlying connection pool is closed.
    """

    def __init__(
        self,
        config: Config,
        cookie: str,
        transport: httpx.BaseTransport | None = None,
    ):
        self.config = config
        self.webapi_url = config.cloud115.webapi_url.rstrip("/")
        self.web_url = config.cloud115.web_url.rstrip("/")
        self.page_size = config.cloud115.page_size
        self._cookie = cookie
        self._http = httpx.Client(
            timeout=config.cloud115.timeout,
            transport=transport,
            follow_redirects=False,
        )

    def __enter__(self) -> "Cloud115Client":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _headers(self, referer: str | None = None) -> dict[str, str]:
        return {
            "User-Agent": self.config.cloud115.user_agent,
            "Accept": "application/json, text/javascript, */*; q=0.01",
            "X-Requested-With": "XMLHttpRequest",
            "Referer": referer or f"{self.web_url}/",
            "Origin": self.web_url,
            "Cookie": self._cookie,
        }

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        data: dict | None = None,
        referer: str | None = None,
    ) -> dict:
        """Send one request and return the decoded JSON object.

        Raises RemoteUnavailable on transport errors and 5xx, RemoteRejected
        on 4xx or a body that is not a JSON object.
        """
        try:
            resp = self._http.request(
                method,
                url,
                params=params,
                data=data,
                headers=self._headers(referer),
            )
        except httpx.TimeoutException as e:
            raise RemoteUnavailable(f"{method} {url} timed out: {e}") from e
        except httpx.TransportError as e:
            raise RemoteUnavailable(f"{method} {url} failed: {e}") from e

        if resp.status_code >= 500:
            raise RemoteUnavailable(f"{method} {url} returned HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise RemoteRejected(
                f"{method} {url} returned HTTP {resp.status_code}",
                errno=resp.status_code,
            )
        if 300 <= resp.status_code < 400:
            # 115 redirects to the login page when the cookie is no longer valid
            raise RemoteRejected(
                f"{method} {url} redirected (session cookie rejected?)",
                errno=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise RemoteRejected(
                f"{method} {url} returned a non-JSON body (session cookie rejected?)",
            ) from e
        if not isinstance(payload, dict):
            raise RemoteRejected(f"{method} {url} returned unexpected payload type")
        return payload

    def _has_more(self, page: list, offset: int, count) -> bool:
        """Whether another page should be requested after reading ``offset`` items.

        The reported ``count`` is authoritative; pages may come back shorter
        than the requested limit. A short page only ends the listing when no
        count was returned.
        """
        if not page:
            return False
        if count is None or count == "":
            return len(page) >= self.page_size
        return offset < _to_int(count)

    # --- Directory operations ---

    def list_directory(self, handle: str) -> list[DirectoryEntry]:
        """List a folder, directories and files, in provider order."""
        entries: list[DirectoryEntry] = []
        offset = 0
        while True:
            payload = self._request(
                "GET",
                f"{self.webapi_url}/files",
                params={
                    "cid": handle,
                    "show_dir": 1,
                    "format": "json",
                    "offset": offset,
                    "limit": self.page_size,
                },
            )
            if not payload.get("state"):
                raise RemoteRejected(
                    _error_message(payload, f"Listing folder {handle} refused"),
                    errno=_error_number(payload),
                )

            page = payload.get("data") or []
            for item in page:
                # Directory items carry only cid; file items carry fid (cid is the parent)
                is_dir = not item.get("fid")
                entries.append(DirectoryEntry(
                    name=str(item.get("n") or item.get("name") or ""),
                    handle=str(item.get("cid") if is_dir else item.get("fid")),
                    is_directory=is_dir,
                ))

            offset += len(page)
            if not self._has_more(page, offset, payload.get("count")):
                break

        logger.debug("Listed folder %s: %d entries", handle, len(entries))
        return entries

    def create_directory(self, parent_handle: str, name: str) -> str:
        """Create one folder under parent_handle and return its handle."""
        payload = self._request(
            "POST",
            f"{self.webapi_url}/files/add",
            data={"pid": parent_handle, "cname": name},
        )
        if not payload.get("state"):
            raise RemoteRejected(
                _error_message(payload, f"Creating folder {name!r} refused"),
                errno=_error_number(payload),
            )
        handle = payload.get("cid") or payload.get("file_id")
        if not handle:
            raise RemoteRejected(f"Creating folder {name!r} returned no folder id")
        logger.info("Created folder %r under %s -> %s", name, parent_handle, handle)
        return str(handle)

    def get_folder_path(self, handle: str) -> list[str]:
        """Return the display names from the root down to ``handle``."""
        payload = self._request(
            "GET",
            f"{self.webapi_url}/files/getid",
            params={"cid": handle},
            referer=f"{self.web_url}/?cid={handle}&offset=0&mode=wangpan",
        )
        paths = payload.get("data")
        if isinstance(paths, list) and paths:
            if not all(isinstance(p, dict) for p in paths):
                raise RemoteRejected(f"Folder path for {handle} has unexpected entries")
            return [str(p.get("name") or p.get("file_name") or "") for p in paths]
        name = payload.get("name") or payload.get("file_name")
        if name:
            return [str(name)]
        raise RemoteRejected(
            _error_message(payload, f"No name returned for folder {handle}"),
            errno=_error_number(payload),
        )

    # --- Share operations ---

    def get_share_snapshot(self, share: ShareReference) -> ShareSnapshot:
        """Fetch the title and full file list of a share."""
        title = ""
        files: list[RemoteFile] = []
        offset = 0
        referer = f"{self.web_url}/s/{share.share_code}"
        while True:
            try:
                payload = self._request(
                    "GET",
                    f"{self.webapi_url}/share/snap",
                    params={
                        "share_code": share.share_code,
                        "receive_code": share.receive_code,
                        "offset": offset,
                        "limit": self.page_size,
                    },
                    referer=referer,
                )
            except RemoteRejected as e:
                if e.errno == 404:
                    raise ShareInvalid(f"Share {share.share_code} not found", errno=404) from e
                raise

            if not payload.get("state"):
                raise ShareInvalid(
                    _error_message(payload, f"Share {share.share_code} could not be read"),
                    errno=_error_number(payload),
                )

            data = payload.get("data") or {}
            if not title:
                info = data.get("shareinfo") or data.get("share_info") or {}
                title = str(data.get("share_title") or info.get("share_title") or "")

            page = data.get("list") or []
            for item in page:
                files.append(RemoteFile(
                    file_id=str(item.get("fid") or item.get("cid")),
                    file_name=str(item.get("n") or ""),
                    file_size=_to_int(item.get("s")),
                ))

            offset += len(page)
            if not self._has_more(page, offset, data.get("count")):
                break

        logger.debug(
            "Share %s snapshot: %r, %d file(s)", share.share_code, title, len(files),
        )
        return ShareSnapshot(title=title or "Untitled", files=files)

    def import_files(
        self, share: ShareReference, target_directory: str, file_ids,
    ) -> int:
        """
        Copy files from a share into target_directory by reference.

        Returns the number of files requested. An empty selection returns 0
        without contacting the provider.
        """
        ids = sorted({str(fid) for fid in file_ids})
        if not ids:
            logger.debug("Share %s: nothing to import", share.share_code)
            return 0

        payload = self._request(
            "POST",
            f"{self.web_url}/webapi/share/receive",
            data={
                "cid": target_directory,
                "share_code": share.share_code,
                "receive_code": share.receive_code,
                # The receive endpoint takes the ids as one comma-joined file_id
                # field, the name the 115 web client sends
                "file_id": ",".join(ids),
            },
            referer=f"{self.web_url}/s/{share.share_code}",
        )
        if not payload.get("state"):
            raise RemoteRejected(
                _error_message(payload, "Share receive refused"),
                errno=_error_number(payload),
            )

        logger.info(
            "Imported %d file(s) from share %s into %s",
            len(ids), share.share_code, target_directory,
        )
        return len(ids)
