"""One-shot import of a share's files into a destination folder."""

import logging
from dataclasses import dataclass, field

from .cloud115 import Cloud115Client, RemoteFile, ShareReference, ShareSnapshot
from .errors import EmptyShare

logger = logging.getLogger("sharesync.transfer")

ALL = "all"


@dataclass
class ImportResult:
    title: str
    imported_count: int
    imported_files: list[RemoteFile] = field(default_factory=list)
    snapshot: ShareSnapshot | None = None


def _selected_ids(selection) -> set[str]:
    # A lone id string is one id, not a sequence of characters
    if isinstance(selection, str):
        return {selection}
    return {str(fid) for fid in selection}


def select_files(snapshot: ShareSnapshot, selection) -> list[RemoteFile]:
    """Files of the snapshot picked by ``selection`` ("all", one id or a set of ids), in share order."""
    if selection == ALL:
        return list(snapshot.files)
    wanted = _selected_ids(selection)
    return [f for f in snapshot.files if f.file_id in wanted]


def import_files_from_snapshot(
    client: Cloud115Client,
    share: ShareReference,
    target_directory: str,
    snapshot: ShareSnapshot,
    files: list[RemoteFile],
) -> ImportResult:
    """Import ``files`` (already taken from ``snapshot``). Raises EmptyShare if none."""
    if not files:
        raise EmptyShare(f"Nothing to import from share {share.share_code}")

    count = client.import_files(share, target_directory, [f.file_id for f in files])
    return ImportResult(
        title=snapshot.title,
        imported_count=count,
        imported_files=files,
        snapshot=snapshot,
    )


def import_share(
    client: Cloud115Client,
    share: ShareReference,
    target_directory: str,
    selection=ALL,
) -> ImportResult:
    """
    Fetch the share snapshot and import the selected files in one batch.

    Single attempt, no retry. Raises ShareInvalid, EmptyShare, RemoteRejected
    or RemoteUnavailable to the caller.
    """
    snapshot = client.get_share_snapshot(share)
    files = select_files(snapshot, selection)
    if selection != ALL:
        missing = _selected_ids(selection) - {f.file_id for f in files}
        if missing:
            logger.warning(
                "Share %s: %d selected file(s) not in snapshot, skipped",
                share.share_code, len(missing),
            )

    result = import_files_from_snapshot(client, share, target_directory, snapshot, files)
    logger.info(
        "Transferred %r (%d file(s)) from share %s into %s",
        result.title, result.imported_count, share.share_code, target_directory,
    )
    return result
