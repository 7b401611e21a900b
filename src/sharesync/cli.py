"""CLI interface for transfers, monitor tasks and administration."""

import argparse
import sys
from pathlib import Path

from . import db
from .cloud115 import ROOT_HANDLE, Cloud115Client, ShareReference, parse_share_link
from .config import Config, load_config
from .credentials import require_credential
from .errors import SharesyncError
from .logging_setup import setup_logging
from .monitor import cancel_monitor, create_monitor
from .paths import PathResolver
from .reconciler import run_daemon, run_once
from .transfer import ALL, import_share


def _load(args) -> Config:
    config = load_config(Path(args.config) if args.config else None)
    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    db.init_db(config.db_path)
    return config


def _owner(args, config: Config) -> str:
    return args.owner or config.cloud115.owner_id


def _client(args, config: Config) -> Cloud115Client:
    return Cloud115Client(config, require_credential(config, _owner(args, config)))


def _share_from_args(args) -> ShareReference:
    share = parse_share_link(args.share, password=args.password or "")
    if share is None:
        share = ShareReference(share_code=args.share.strip(), receive_code=args.password or "")
    return share


def _target_directory(args, config: Config, client: Cloud115Client) -> str:
    """--cid wins, then --folder (resolved), then the owner's stored folder."""
    if args.cid:
        return args.cid
    if args.folder:
        return PathResolver(client, config.paths.create_missing).resolve(args.folder)
    owner = _owner(args, config)
    if owner:
        with db.get_db(config.db_path) as conn:
            setting = db.get_user_setting(conn, owner)
        if setting:
            return setting.target_directory
    return ROOT_HANDLE


def cmd_init(args):
    """Initialize the database."""
    config = load_config(Path(args.config) if args.config else None)
    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    db.init_db(config.db_path)
    print(f"Database initialized at {config.db_path}")


def cmd_cookie_set(args):
    config = _load(args)
    owner = _owner(args, config)
    if not owner:
        print("Error: --owner required (or set cloud115.owner_id)", file=sys.stderr)
        sys.exit(1)
    cookie = args.cookie if args.cookie else sys.stdin.read().strip()
    if not cookie:
        print("Error: No cookie provided", file=sys.stderr)
        sys.exit(1)
    with db.get_db(config.db_path) as conn:
        db.set_user_cookie(conn, owner, cookie)
    print(f"Cookie stored for {owner}")


def cmd_folder_set(args):
    config = _load(args)
    owner = _owner(args, config)
    if not owner:
        print("Error: --owner required (or set cloud115.owner_id)", file=sys.stderr)
        sys.exit(1)
    with _client(args, config) as client:
        resolver = PathResolver(client, config.paths.create_missing)
        handle = resolver.resolve(args.path)
        label = resolver.describe(handle)
    with db.get_db(config.db_path) as conn:
        db.set_user_target_directory(conn, owner, handle)
    print(f"Transfers for {owner} now go to {label} (cid {handle})")


def cmd_folder_show(args):
    config = _load(args)
    owner = _owner(args, config)
    handle = ROOT_HANDLE
    if owner:
        with db.get_db(config.db_path) as conn:
            setting = db.get_user_setting(conn, owner)
        if setting:
            handle = setting.target_directory
    with _client(args, config) as client:
        label = PathResolver(client).describe(handle)
    print(f"{label} (cid {handle})")


def cmd_resolve(args):
    config = _load(args)
    with _client(args, config) as client:
        handle = PathResolver(client, config.paths.create_missing).resolve(args.path)
    print(handle)


def cmd_transfer(args):
    config = _load(args)
    share = _share_from_args(args)
    selection = set(args.file) if args.file else ALL
    with _client(args, config) as client:
        target = _target_directory(args, config, client)
        result = import_share(client, share, target, selection)
        label = PathResolver(client).describe(target)
        print(f"Transferred {result.imported_count} file(s) of {result.title!r} to {label}")
        for f in result.imported_files:
            print(f"  {f.file_name} ({f.file_size} bytes)")

        if args.follow:
            task = create_monitor(
                client, config.db_path, share, target, args.channel or "",
                snapshot=result.snapshot,
            )
            print(f"Following share {share.share_code} (task {task.id})")


def cmd_monitor_add(args):
    config = _load(args)
    share = _share_from_args(args)
    with _client(args, config) as client:
        target = _target_directory(args, config, client)
        task = create_monitor(client, config.db_path, share, target, args.channel or "")
    print(
        f"Task {task.id}: {task.title!r} -> cid {task.target_directory}, "
        f"{len(task.processed_file_ids)} file(s) already present"
    )


def cmd_monitor_list(args):
    config = _load(args)
    with db.get_db(config.db_path) as conn:
        tasks = db.list_monitor_tasks(conn)
    if not tasks:
        print("No monitored shares")
        return
    for t in tasks:
        status = f"errors={t.consecutive_errors}" if t.consecutive_errors else "ok"
        print(
            f"[{t.id}] {t.share_code}  {t.title!r}  cid={t.target_directory}  "
            f"files={len(t.processed_file_ids)}  {status}  checked={t.last_checked_at or '-'}"
        )
        if t.last_error:
            print(f"      last error: {t.last_error}")


def cmd_monitor_cancel(args):
    config = _load(args)
    share = parse_share_link(args.share)
    share_code = share.share_code if share else args.share.strip()
    if cancel_monitor(config.db_path, share_code):
        print(f"Stopped following {share_code}")
    else:
        print(f"{share_code} was not being followed")


def cmd_run(args):
    config = _load(args)
    if args.daemon:
        run_daemon(config)
    else:
        queued = run_once(config)
        print(f"Reconciled {queued} task(s)")


def _add_share_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("share", help="115 share link or share code")
    p.add_argument("-p", "--password", help="Receive code (if not in the link)")


def _add_target_args(p: argparse.ArgumentParser) -> None:
    group = p.add_mutually_exclusive_group()
    group.add_argument("--folder", help="Destination folder path (created if missing)")
    group.add_argument("--cid", help="Destination folder id")


def main():
    parser = argparse.ArgumentParser(description="sharesync - 115 share transfer and follow")
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-o", "--owner", help="Owner id whose cookie/settings to use")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Initialize database")

    cookie_parser = subparsers.add_parser("cookie", help="Manage the 115 session cookie")
    cookie_subparsers = cookie_parser.add_subparsers(dest="cookie_action", required=True)
    cookie_set_parser = cookie_subparsers.add_parser("set", help="Store a cookie (stdin if omitted)")
    cookie_set_parser.add_argument("cookie", nargs="?", help="Cookie header value")

    folder_parser = subparsers.add_parser("folder", help="Default transfer folder")
    folder_subparsers = folder_parser.add_subparsers(dest="folder_action", required=True)
    folder_set_parser = folder_subparsers.add_parser("set", help="Resolve and store a folder path")
    folder_set_parser.add_argument("path", help="Slash-delimited folder path")
    folder_subparsers.add_parser("show", help="Show the stored folder")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a folder path to its id")
    resolve_parser.add_argument("path", help="Slash-delimited folder path")

    transfer_parser = subparsers.add_parser("transfer", help="Import a share into your storage")
    _add_share_args(transfer_parser)
    _add_target_args(transfer_parser)
    transfer_parser.add_argument("--file", action="append", help="File id to import (repeatable, default all)")
    transfer_parser.add_argument("--follow", action="store_true", help="Keep importing new files")
    transfer_parser.add_argument("--channel", help="Notification channel for --follow")

    monitor_parser = subparsers.add_parser("monitor", help="Manage followed shares")
    monitor_subparsers = monitor_parser.add_subparsers(dest="monitor_action", required=True)
    monitor_add_parser = monitor_subparsers.add_parser("add", help="Follow a share")
    _add_share_args(monitor_add_parser)
    _add_target_args(monitor_add_parser)
    monitor_add_parser.add_argument("--channel", help="Notification channel")
    monitor_subparsers.add_parser("list", help="List followed shares")
    monitor_cancel_parser = monitor_subparsers.add_parser("cancel", help="Stop following a share")
    monitor_cancel_parser.add_argument("share", help="115 share link or share code")

    run_parser = subparsers.add_parser("run", help="Run reconciliation")
    run_parser.add_argument("--daemon", "-d", action="store_true", help="Run continuously")

    args = parser.parse_args()

    if args.command != "init":
        config = load_config(Path(args.config) if args.config else None)
        setup_logging(config, verbose=args.verbose, daemon_mode=getattr(args, "daemon", False))

    commands = {
        "init": cmd_init,
        "resolve": cmd_resolve,
        "transfer": cmd_transfer,
        "run": cmd_run,
    }

    try:
        if args.command == "cookie":
            {"set": cmd_cookie_set}[args.cookie_action](args)
        elif args.command == "folder":
            folder_commands = {
                "set": cmd_folder_set,
                "show": cmd_folder_show,
            }
            folder_commands[args.folder_action](args)
        elif args.command == "monitor":
            monitor_commands = {
                "add": cmd_monitor_add,
                "list": cmd_monitor_list,
                "cancel": cmd_monitor_cancel,
            }
            monitor_commands[args.monitor_action](args)
        else:
            commands[args.command](args)
    except SharesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
