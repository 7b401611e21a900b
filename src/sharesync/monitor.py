"""Monitor task lifecycle: follow a share, stop following it."""

import logging
from pathlib import Path

from . import db
from .cloud115 import Cloud115Client, ShareReference, ShareSnapshot
from .errors import AlreadyMonitored

logger = logging.getLogger("sharesync.monitor")


def create_monitor(
    client: Cloud115Client,
    db_path: Path,
    share: ShareReference,
    target_directory: str,
    notify_channel: str,
    snapshot: ShareSnapshot | None = None,
) -> db.MonitorTask:
    """
    Start following a share. Creation is an upsert on the share code.

    The processed set is seeded with every file visible in ``snapshot``
    (fetched now if not supplied), so files present when monitoring starts
    are never imported by reconciliation. If the share is already
    monitored the existing task is returned unchanged.
    """
    with db.get_db(db_path) as conn:
        existing = db.get_monitor_task(conn, share.share_code)
    if existing is not None:
        logger.info("Share %s already monitored (task %d)", share.share_code, existing.id)
        return existing

    if snapshot is None:
        snapshot = client.get_share_snapshot(share)

    with db.get_db(db_path) as conn:
        try:
            task_id = db.create_monitor_task(
                conn,
                title=snapshot.title,
                share_code=share.share_code,
                receive_code=share.receive_code,
                target_directory=target_directory,
                notify_channel=notify_channel,
                processed_file_ids=snapshot.file_ids,
            )
        except AlreadyMonitored:
            # Lost a race with a concurrent create
            logger.info("Share %s was registered concurrently", share.share_code)
            return db.get_monitor_task(conn, share.share_code)
        task = db.get_monitor_task(conn, share.share_code)

    logger.info(
        "Monitoring share %s (%r) as task %d, %d file(s) already present",
        share.share_code, snapshot.title, task_id, len(snapshot.files),
    )
    return task


def cancel_monitor(db_path: Path, share_code: str) -> bool:
    """Stop following a share. Returns False (no error) if it was not monitored."""
    with db.get_db(db_path) as conn:
        deleted = db.delete_monitor_task(conn, share_code)
    if deleted:
        logger.info("Stopped monitoring share %s", share_code)
    else:
        logger.debug("Cancel for unmonitored share %s ignored", share_code)
    return deleted
