"""Reconciliation scheduler - keeps monitored shares imported."""

import fcntl
import logging
import os
import signal
import tempfile
import threading
import time
from collections import OrderedDict
from pathlib import Path

from . import db
from .cloud115 import Cloud115Client, RemoteFile, ShareReference, ShareSnapshot
from .config import Config, load_config
from .credentials import get_credential
from .notifications import format_import_notice, send_notification
from .transfer import import_files_from_snapshot

logger = logging.getLogger("sharesync.reconciler")

# Set by SIGTERM/SIGINT; also wakes the daemon ticker
_shutdown = threading.Event()


def _signal_handler(signum, frame):
    """Handle shutdown signals."""
    logger.info("Received signal %d, shutting down gracefully...", signum)
    _shutdown.set()


def compute_new_files(snapshot: ShareSnapshot, processed_file_ids: set[str]) -> list[RemoteFile]:
    """Files in the snapshot not yet processed, in share order, first occurrence only."""
    seen = set(processed_file_ids)
    new_files = []
    for f in snapshot.files:
        if f.file_id in seen:
            continue
        seen.add(f.file_id)
        new_files.append(f)
    return new_files


def reconcile_task(config: Config, client: Cloud115Client, task: db.MonitorTask) -> int:
    """
    Run one read-diff-import-persist-notify pass for a task.

    Returns the number of newly imported files. Exceptions propagate; the
    processed set is only extended after the import call succeeded, and the
    notification only goes out after that write.
    """
    share = ShareReference(task.share_code, task.receive_code)
    snapshot = client.get_share_snapshot(share)
    new_files = compute_new_files(snapshot, task.processed_file_ids)

    if not new_files:
        logger.debug("Task %d (%s): no new files", task.id, task.share_code)
        with db.get_db(config.db_path) as conn:
            db.record_monitor_check(conn, task.share_code)
        return 0

    result = import_files_from_snapshot(
        client, share, task.target_directory, snapshot, new_files,
    )

    with db.get_db(config.db_path) as conn:
        still_monitored = db.add_processed_file_ids(
            conn, task.share_code, [f.file_id for f in new_files],
        )
    if not still_monitored:
        logger.info(
            "Task %d (%s) was cancelled during reconciliation, %d file(s) imported unrecorded",
            task.id, task.share_code, result.imported_count,
        )
        return result.imported_count

    logger.info(
        "Task %d (%s): imported %d new file(s) from %r",
        task.id, task.share_code, result.imported_count, task.title,
    )
    send_notification(
        config,
        task.notify_channel,
        format_import_notice(task.title, result.imported_count),
        title="Share updated",
    )
    return result.imported_count


def process_monitor_task(config: Config, cookie: str, share_code: str) -> int | None:
    """
    Reconcile one task by share code, containing every failure.

    The task row is read here, inside the failure boundary, so cancellations
    and earlier writes are seen and an unreadable row only fails this task.
    Returns the import count, or None if the task failed or is gone.
    """
    try:
        with db.get_db(config.db_path) as conn:
            task = db.get_monitor_task(conn, share_code)
        if task is None:
            logger.debug("Share %s no longer monitored, skipped", share_code)
            return None

        with Cloud115Client(config, cookie) as client:
            return reconcile_task(config, client, task)
    except Exception as e:
        logger.warning(
            "Share %s reconciliation failed: %s: %s", share_code, type(e).__name__, e,
        )
        try:
            with db.get_db(config.db_path) as conn:
                db.record_monitor_check(conn, share_code, error=f"{type(e).__name__}: {e}")
        except Exception as record_error:
            logger.error("Could not record failure for %s: %s", share_code, record_error)
        return None


class ReconcileWorker(threading.Thread):
    """Worker thread that drains the pool's pending queue one task at a time."""

    def __init__(self, config: Config, pool: "ReconcilePool", slot: int):
        super().__init__(daemon=True, name=f"reconcile-{slot}")
        self.config = config
        self.pool = pool
        self.slot = slot

    def run(self) -> None:
        try:
            while True:
                item = self.pool._claim_next()
                if item is None:
                    break
                share_code, cookie = item
                try:
                    process_monitor_task(self.config, cookie, share_code)
                finally:
                    self.pool._release(share_code)
        finally:
            self.pool._on_worker_exit(self.slot)


class ReconcilePool:
    """
    Bounded worker pool for reconciliation cycles.

    A share code is either pending, in flight, or absent. ``start_cycle``
    skips share codes that are still pending or in flight from an earlier
    cycle, so one task never runs twice concurrently.
    """

    def __init__(self, config: Config):
        self.config = config
        self.max_workers = max(1, config.monitor.max_workers)
        self._pending: OrderedDict[str, str] = OrderedDict()  # share_code -> cookie
        self._in_flight: set[str] = set()
        self._workers: dict[int, ReconcileWorker] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._stopping = False

    def start_cycle(self, share_codes: list[str], cookie: str) -> int:
        """Queue every share code not already queued or running. Returns the number queued."""
        queued = 0
        with self._lock:
            if self._stopping:
                return 0
            for share_code in share_codes:
                if share_code in self._pending or share_code in self._in_flight:
                    logger.info("Share %s still running from previous cycle, skipped", share_code)
                    continue
                self._pending[share_code] = cookie
                queued += 1
            self._spawn_workers()
        return queued

    def _spawn_workers(self) -> None:
        # Caller holds self._lock
        wanted = min(self.max_workers, len(self._pending) + len(self._in_flight))
        free_slots = (s for s in range(self.max_workers) if s not in self._workers)
        for slot in free_slots:
            if len(self._workers) >= wanted:
                break
            worker = ReconcileWorker(self.config, self, slot)
            self._workers[slot] = worker
            worker.start()

    def _claim_next(self) -> tuple[str, str] | None:
        with self._lock:
            if self._stopping or not self._pending:
                return None
            share_code, cookie = self._pending.popitem(last=False)
            self._in_flight.add(share_code)
            return share_code, cookie

    def _release(self, share_code: str) -> None:
        with self._lock:
            self._in_flight.discard(share_code)

    def _on_worker_exit(self, slot: int) -> None:
        with self._lock:
            self._workers.pop(slot, None)
            # A cycle may have queued work after this worker saw an empty queue
            if self._pending and not self._stopping:
                self._spawn_workers()
            if not self._workers:
                self._idle.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until all queued work has finished. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            while self._workers:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def shutdown(self, timeout: float = 30.0) -> None:
        """Drop pending work and wait for in-flight tasks to finish."""
        with self._lock:
            self._stopping = True
            dropped = len(self._pending)
            self._pending.clear()
        if dropped:
            logger.info("Dropped %d pending reconciliation(s) on shutdown", dropped)
        self.wait_idle(timeout)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._workers)

    @property
    def busy_share_codes(self) -> set[str]:
        with self._lock:
            return set(self._in_flight) | set(self._pending)


def run_cycle(config: Config, pool: ReconcilePool) -> int:
    """Queue one reconciliation pass over all monitor tasks. Returns tasks queued."""
    # Re-read the cookie every cycle, it may have been replaced since the last one
    cookie = get_credential(config)
    if not cookie:
        logger.warning("No 115 cookie available, skipping reconciliation cycle")
        return 0

    # Rows are decoded by each worker so one unreadable task cannot stall the cycle
    with db.get_db(config.db_path) as conn:
        share_codes = db.list_monitor_share_codes(conn)
    if not share_codes:
        logger.debug("No monitor tasks")
        return 0

    queued = pool.start_cycle(share_codes, cookie)
    logger.info("Reconciliation cycle: %d task(s), %d queued", len(share_codes), queued)
    return queued


def run_once(config: Config, timeout: float | None = None) -> int:
    """Run a single cycle to completion (for cron-style invocation)."""
    pool = ReconcilePool(config)
    queued = run_cycle(config, pool)
    if not pool.wait_idle(timeout):
        logger.warning("Reconciliation cycle did not finish within %ss", timeout)
    return queued


def run_daemon(config: Config) -> None:
    """
    Run reconciliation cycles every ``monitor.interval`` seconds until
    SIGTERM/SIGINT.
    """
    # Acquire exclusive lock to prevent multiple daemon instances
    lock_path = Path(tempfile.gettempdir()) / "sharesync-reconciler.lock"
    lock_file = open(lock_path, "w")
    try:
        fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        logger.error("Another reconciler daemon is already running. Exiting.")
        lock_file.close()
        return

    lock_file.write(str(os.getpid()))
    lock_file.flush()

    _shutdown.clear()
    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    logger.info("STARTUP Reconciler daemon starting (pid: %d)", os.getpid())
    logger.info("STARTUP Cycle interval: %ds", config.monitor.interval)
    logger.info("STARTUP Max workers: %d", config.monitor.max_workers)

    db.init_db(config.db_path)
    pool = ReconcilePool(config)
    last_cycle: float | None = None

    try:
        while not _shutdown.is_set():
            now = time.monotonic()
            if last_cycle is None or now - last_cycle >= config.monitor.interval:
                try:
                    run_cycle(config, pool)
                except Exception as e:
                    logger.error("Error starting reconciliation cycle: %s", e)
                last_cycle = now
            _shutdown.wait(config.monitor.poll_interval)
    finally:
        pool.shutdown()
        fcntl.flock(lock_file, fcntl.LOCK_UN)
        lock_file.close()

    logger.info("Shutdown complete.")


def main():
    """Entry point for the reconciler script."""
    import argparse

    from .logging_setup import setup_logging

    parser = argparse.ArgumentParser(description="sharesync reconciliation scheduler")
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("--daemon", "-d", action="store_true", help="Run as daemon (continuous loop)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    config = load_config(Path(args.config) if args.config else None)
    setup_logging(config, verbose=args.verbose, daemon_mode=args.daemon)
    config.db_path.parent.mkdir(parents=True, exist_ok=True)

    if args.daemon:
        if not config.monitor.enabled:
            logger.warning("Monitoring disabled in config, daemon not started")
            return
        run_daemon(config)
    else:
        db.init_db(config.db_path)
        queued = run_once(config)
        logger.info("Reconciled %d task(s)", queued)


if __name__ == "__main__":
    main()
