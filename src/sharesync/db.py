"""Database operations for monitor tasks and user settings."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from .errors import AlreadyMonitored

logger = logging.getLogger("sharesync.db")


@dataclass
class MonitorTask:
    id: int
    title: str
    share_code: str
    receive_code: str
    target_directory: str
    notify_channel: str
    processed_file_ids: set[str] = field(default_factory=set)
    consecutive_errors: int = 0
    last_error: str | None = None
    last_checked_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class UserSetting:
    user_id: str
    cloud115_cookie: str | None
    target_directory: str


def init_db(db_path: Path) -> None:
    """Initialize database with schema."""
    schema_path = Path(__file__).parent / "schema.sql"
    with sqlite3.connect(db_path) as conn:
        conn.executescript(schema_path.read_text())


@contextmanager
def get_db(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Get database connection with row factory."""
    # timeout=30.0 waits up to 30s for locks instead of failing immediately
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


# ============================================================================
# Monitor tasks
# ============================================================================


def _decode_file_ids(raw: str | None) -> set[str]:
    if not raw:
        return set()
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        logger.error("Corrupt processed_file_ids value: %.80r", raw)
        raise
    if not isinstance(values, list):
        raise ValueError(f"processed_file_ids is not a list: {raw[:80]!r}")
    return {str(v) for v in values}


def _encode_file_ids(file_ids: Iterable[str]) -> str:
    return json.dumps(sorted({str(f) for f in file_ids}))


def _row_to_monitor_task(row: sqlite3.Row) -> MonitorTask:
    return MonitorTask(
        id=row["id"],
        title=row["title"],
        share_code=row["share_code"],
        receive_code=row["receive_code"],
        target_directory=row["target_directory"],
        notify_channel=row["notify_channel"],
        processed_file_ids=_decode_file_ids(row["processed_file_ids"]),
        consecutive_errors=row["consecutive_errors"],
        last_error=row["last_error"],
        last_checked_at=row["last_checked_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def create_monitor_task(
    conn: sqlite3.Connection,
    title: str,
    share_code: str,
    receive_code: str,
    target_directory: str,
    notify_channel: str,
    processed_file_ids: Iterable[str] = (),
) -> int:
    """Insert a monitor task. Raises AlreadyMonitored if the share code exists."""
    try:
        cursor = conn.execute(
            """
            INSERT INTO monitor_tasks
                (title, share_code, receive_code, target_directory,
                 notify_channel, processed_file_ids)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                title, share_code, receive_code, target_directory,
                notify_channel, _encode_file_ids(processed_file_ids),
            ),
        )
    except sqlite3.IntegrityError as e:
        raise AlreadyMonitored(share_code) from e
    conn.commit()
    return cursor.lastrowid


def get_monitor_task(conn: sqlite3.Connection, share_code: str) -> MonitorTask | None:
    cursor = conn.execute(
        "SELECT * FROM monitor_tasks WHERE share_code = ?", (share_code,),
    )
    row = cursor.fetchone()
    return _row_to_monitor_task(row) if row else None


def list_monitor_tasks(conn: sqlite3.Connection) -> list[MonitorTask]:
    """All decodable tasks in creation order. Rows that fail to decode are logged and skipped."""
    cursor = conn.execute("SELECT * FROM monitor_tasks ORDER BY id")
    tasks = []
    for row in cursor.fetchall():
        try:
            tasks.append(_row_to_monitor_task(row))
        except ValueError as e:
            logger.error("Skipping unreadable monitor task %s: %s", row["share_code"], e)
    return tasks


def list_monitor_share_codes(conn: sqlite3.Connection) -> list[str]:
    cursor = conn.execute("SELECT share_code FROM monitor_tasks ORDER BY id")
    return [row["share_code"] for row in cursor.fetchall()]


def add_processed_file_ids(
    conn: sqlite3.Connection, share_code: str, file_ids: Iterable[str],
) -> bool:
    """
    Union ``file_ids`` into the task's processed set and reset its error state.

    Returns False if the task no longer exists (cancelled meanwhile).
    """
    cursor = conn.execute(
        "SELECT processed_file_ids FROM monitor_tasks WHERE share_code = ?",
        (share_code,),
    )
    row = cursor.fetchone()
    if row is None:
        return False
    merged = _decode_file_ids(row["processed_file_ids"]) | {str(f) for f in file_ids}
    conn.execute(
        """
        UPDATE monitor_tasks
        SET processed_file_ids = ?, consecutive_errors = 0, last_error = NULL,
            last_checked_at = datetime('now'), updated_at = datetime('now')
        WHERE share_code = ?
        """,
        (_encode_file_ids(merged), share_code),
    )
    conn.commit()
    return True


def record_monitor_check(
    conn: sqlite3.Connection, share_code: str, error: str | None = None,
) -> None:
    """Record a reconciliation attempt. Never touches processed_file_ids."""
    if error is None:
        conn.execute(
            """
            UPDATE monitor_tasks
            SET consecutive_errors = 0, last_error = NULL, last_checked_at = datetime('now')
            WHERE share_code = ?
            """,
            (share_code,),
        )
    else:
        conn.execute(
            """
            UPDATE monitor_tasks
            SET consecutive_errors = consecutive_errors + 1, last_error = ?,
                last_checked_at = datetime('now')
            WHERE share_code = ?
            """,
            (error[:500], share_code),
        )
    conn.commit()


def delete_monitor_task(conn: sqlite3.Connection, share_code: str) -> bool:
    """Delete a task. Returns True if a row existed."""
    cursor = conn.execute("DELETE FROM monitor_tasks WHERE share_code = ?", (share_code,))
    conn.commit()
    return cursor.rowcount > 0


# ============================================================================
# User settings
# ============================================================================


def get_user_setting(conn: sqlite3.Connection, user_id: str) -> UserSetting | None:
    cursor = conn.execute(
        "SELECT user_id, cloud115_cookie, target_directory FROM user_settings WHERE user_id = ?",
        (user_id,),
    )
    row = cursor.fetchone()
    if row is None:
        return None
    return UserSetting(
        user_id=row["user_id"],
        cloud115_cookie=row["cloud115_cookie"],
        target_directory=row["target_directory"],
    )


def set_user_cookie(conn: sqlite3.Connection, user_id: str, cookie: str) -> None:
    conn.execute(
        """
        INSERT INTO user_settings (user_id, cloud115_cookie, updated_at)
        VALUES (?, ?, datetime('now'))
        ON CONFLICT(user_id) DO UPDATE SET
            cloud115_cookie = excluded.cloud115_cookie,
            updated_at = excluded.updated_at
        """,
        (user_id, cookie),
    )


def set_user_target_directory(
    conn: sqlite3.Connection, user_id: str, target_directory: str,
) -> None:
    conn.execute(
        """
        INSERT INTO user_settings (user_id, target_directory, updated_at)
        VALUES (?, ?, datetime('now'))
        ON CONFLICT(user_id) DO UPDATE SET
            target_directory = excluded.target_directory,
            updated_at = excluded.updated_at
        """,
        (user_id, target_directory),
    )
