from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

from vaultmaker.config import Settings, load_settings
from vaultmaker.core.errors import PreconditionError
from vaultmaker.core.ingest import SourceWatcher
from vaultmaker.core.llm import build_embedding_client, build_generation_client
from vaultmaker.core.logfile import set_log_file
from vaultmaker.core.scheduler import Scheduler
from vaultmaker.core.storage import load_vault_selection, save_vault_selection


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vaultmaker", description="Turn a folder of documents into a linked note vault.")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Show pipeline status for the selected vault.")
    status.add_argument("--json", action="store_true", help="Print status as JSON.")

    sub.add_parser("run", help="Resume and run the pipeline to completion.")

    ingest = sub.add_parser("ingest", help="Scan a source folder and queue changed files.")
    ingest.add_argument("source_dir", nargs="?", default=None)

    sub.add_parser("watch", help="Watch the source folder and keep the pipeline running.")

    config = sub.add_parser("config", help="Save the vault selection.")
    config.add_argument("--vault", required=True)
    config.add_argument("--name", default=None)
    config.add_argument("--source", default=None)
    return parser.parse_args(argv)


def _selection(settings: Settings) -> dict:
    """Saved selection, with VAULT_PATH / VAULT_NAME / SOURCE_DIR settings taking precedence."""
    selected = load_vault_selection(settings.vault_config_path)
    if settings.vault_path:
        selected["vaultPath"] = str(settings.vault_path)
    if settings.vault_name:
        selected["vaultName"] = settings.vault_name
    if settings.source_dir:
        selected["sourceDir"] = str(settings.source_dir)
    return selected


def build_scheduler(settings: Settings, with_llm: bool = True) -> Scheduler:
    scheduler = Scheduler(
        llm=build_generation_client(settings) if with_llm else None,
        embedder=build_embedding_client(settings) if with_llm else None,
        ring_size=settings.log_ring_size,
        target_cluster_size=settings.target_cluster_size,
        max_clusters=settings.max_clusters,
    )
    selected = _selection(settings)
    if selected["vaultPath"]:
        scheduler.attach_vault(selected["vaultPath"], selected["vaultName"], selected["sourceDir"])
    return scheduler


def cmd_status(settings: Settings, args: argparse.Namespace) -> int:
    scheduler = build_scheduler(settings, with_llm=False)
    status = scheduler.status()
    if args.json:
        print(json.dumps(status.to_dict(), indent=2))
        return 0
    if status.vault_path is None:
        print("No vault selected. Run: vaultmaker config --vault PATH")
        return 1
    print(f"Vault:      {status.vault_name} ({status.vault_path})")
    print(f"Source dir: {status.source_dir or '-'}")
    print(f"Stage:      {status.current_stage.value if status.current_stage else '-'}")
    print(f"Queue:      {status.queue_length} task(s)")
    print(f"Processed:  {status.processed_count} source(s)")
    for line in status.log[-10:]:
        print(f"  {line}")
    return 0


def cmd_run(settings: Settings, args: argparse.Namespace) -> int:
    scheduler = build_scheduler(settings)
    try:
        scheduler.check_ready()
    except PreconditionError as e:
        print(f"Cannot start: {e}", file=sys.stderr)
        return 1
    scheduler.subscribe(_printer(scheduler))
    try:
        ok = scheduler.run()
    except KeyboardInterrupt:
        scheduler.request_stop()
        return 130
    return 0 if ok else 1


def cmd_ingest(settings: Settings, args: argparse.Namespace) -> int:
    scheduler = build_scheduler(settings, with_llm=False)
    if scheduler.storage is None:
        print("No vault selected. Run: vaultmaker config --vault PATH", file=sys.stderr)
        return 1
    source_dir = args.source_dir or scheduler.source_dir
    if not source_dir:
        print("No source folder given or saved.", file=sys.stderr)
        return 1
    if args.source_dir:
        save_vault_selection(settings.vault_config_path, sourceDir=str(Path(args.source_dir).resolve()))
    count = scheduler.tracker().scan(Path(source_dir).resolve())
    print(f"{count} file(s) queued")
    return 0


def cmd_watch(settings: Settings, args: argparse.Namespace) -> int:
    scheduler = build_scheduler(settings)
    if scheduler.storage is None or scheduler.source_dir is None:
        print("Select a vault and a source folder first (vaultmaker config).", file=sys.stderr)
        return 1
    scheduler.subscribe(_printer(scheduler))
    tracker = scheduler.tracker()
    source_dir = scheduler.source_dir.resolve()
    tracker.scan(source_dir)
    watcher = SourceWatcher(tracker, source_dir, interval=settings.watch_poll_interval)
    watcher.start()
    try:
        while True:
            if scheduler.queue.length():
                if not scheduler.run():
                    return 1
            time.sleep(settings.watch_poll_interval)
    except KeyboardInterrupt:
        scheduler.request_stop()
    finally:
        watcher.stop()
    return 0


def cmd_config(settings: Settings, args: argparse.Namespace) -> int:
    vault = Path(args.vault).expanduser().resolve()
    updates = {"vaultPath": str(vault), "vaultName": args.name or vault.name}
    if args.source:
        updates["sourceDir"] = str(Path(args.source).expanduser().resolve())
    saved = save_vault_selection(settings.vault_config_path, **updates)
    print(json.dumps(saved, indent=2))
    return 0


def _printer(scheduler: Scheduler):
    """Subscriber echoing new run-log lines to stdout."""
    state = scheduler.run_state
    seen = {"count": state.appended}

    def on_change() -> None:
        new = state.appended - seen["count"]
        if new <= 0:
            return
        seen["count"] = state.appended
        for line in state.lines()[-new:]:
            print(line, flush=True)

    return on_change


COMMANDS = {
    "status": cmd_status,
    "run": cmd_run,
    "ingest": cmd_ingest,
    "watch": cmd_watch,
    "config": cmd_config,
}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = load_settings()
    set_log_file(settings.log_file)
    return COMMANDS[args.command](settings, args)


if __name__ == "__main__":
    raise SystemExit(main())
