from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List

from capreg.core.addressing import namespace_address, proxy_address, record_address
from capreg.core.registry.config import RegistryConfig
from capreg.core.registry.errors import RegistryError
from capreg.core.registry.records import RecordView
from capreg.core.registry.registry import RecordRegistry
from capreg.core.registry.transfer import verify_transfer_receipt
from capreg.core.runtime.event_log import EventLog
from capreg.core.storage.entry import ENTRY_RECORD
from capreg.core.storage.memory_store import MemoryStore
from capreg.core.storage.sqlite_store import SQLiteRecordStore
from capreg.utils.json_safe import to_jsonable


def _print_json(obj: Any) -> None:
    print(json.dumps(to_jsonable(obj), indent=2, sort_keys=True))


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the capreg API server.

    Security notes:
    - If CAPREG_API_KEYS is set, requests must provide X-Capreg-API-Key.
    - Bind to 127.0.0.1 by default (safer than 0.0.0.0).

    """

    try:
        import uvicorn
    except ImportError as e:
        print(f"error: uvicorn is required to serve the API: {e}", file=sys.stderr)
        return 2

    from capreg.api.server import create_app

    app = create_app(db_path=args.db)
    uvicorn.run(app, host=args.host, port=int(args.port), log_level=args.uvicorn_log_level)
    return 0


def cmd_address(args: argparse.Namespace) -> int:
    """Print the deterministic record address for an owner id."""

    cfg = RegistryConfig.from_env()
    proxy = proxy_address(cfg.root_identity, cfg.app_seed)
    _print_json(
        {
            "owner_id": args.owner_id,
            "namespace": cfg.namespace_name,
            "address": record_address(proxy, cfg.namespace_name, args.owner_id),
        }
    )
    return 0


def cmd_namespace_address(_: argparse.Namespace) -> int:
    cfg = RegistryConfig.from_env()
    _print_json(
        {
            "namespace": cfg.namespace_name,
            "address": namespace_address(cfg.root_identity, cfg.app_seed),
            "proxy_address": proxy_address(cfg.root_identity, cfg.app_seed),
        }
    )
    return 0


def cmd_db_init(args: argparse.Namespace) -> int:
    """Initialize a SQLite record store."""

    store = SQLiteRecordStore(Path(args.db))
    store.init_schema()
    _print_json({"ok": True, "db": str(store.db_path)})
    return 0


def cmd_db_show_record(args: argparse.Namespace) -> int:
    """Show the record stored for an owner id (handles are never printed)."""

    cfg = RegistryConfig.from_env()
    store = SQLiteRecordStore(Path(args.db))
    address = record_address(
        proxy_address(cfg.root_identity, cfg.app_seed), cfg.namespace_name, args.owner_id
    )
    try:
        entry = store.load_at(address)
    except KeyError:
        print(f"error: no record for owner {args.owner_id!r} at {address}", file=sys.stderr)
        return 1
    if entry.entry_type != ENTRY_RECORD:
        print(f"error: {address} does not hold a record", file=sys.stderr)
        return 1

    out = RecordView.from_entry(entry).to_dict()
    out["updated_at"] = entry.updated_at.isoformat()
    out["snapshot_hash"] = entry.snapshot_hash
    _print_json(out)
    return 0


def cmd_demo(args: argparse.Namespace) -> int:
    """Bootstrap a registry and walk through create/duplicate/rename/too-long."""

    store = SQLiteRecordStore(Path(args.db)) if args.db else MemoryStore()
    events = EventLog()
    try:
        registry = RecordRegistry.bootstrap(
            args.admin, store=store, config=RegistryConfig.from_env(), events=events
        )
    except RegistryError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    steps: List[Dict[str, Any]] = []

    def step(label: str, fn) -> None:
        try:
            fn()
            steps.append({"step": label, "ok": True})
        except RegistryError as e:
            steps.append({"step": label, "ok": False, "error": type(e).__name__})

    step("create alice 'hello'", lambda: registry.create("alice", "hello"))
    step("create alice 'world'", lambda: registry.create("alice", "world"))
    step("rename alice 'newname'", lambda: registry.rename("alice", "newname"))
    step("create bob 'a'*41", lambda: registry.create("bob", "a" * 41))

    alice = registry.get_record("alice")
    receipt_ok = verify_transfer_receipt(
        alice.transfer_receipt or {}, registry.proxy_public_key_pem()
    )
    _print_json(
        {
            "namespace_address": registry.namespace_address(),
            "steps": steps,
            "alice": alice.to_dict(),
            "has_record": {"alice": registry.has_record("alice"), "bob": registry.has_record("bob")},
            "transfer_receipt_ok": receipt_ok,
            "event_chain_ok": events.verify_integrity(),
            "event_count": len(events.get_events()),
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser."""
    p = argparse.ArgumentParser(prog="capreg", description="capreg CLI")
    p.add_argument(
        "--log-level",
        default=os.environ.get("CAPREG_LOG_LEVEL", "WARNING"),
        help="Python logging level for capreg loggers",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    ad = sub.add_parser("address", help="Print the record address for an owner id")
    ad.add_argument("owner_id", help="Owner identifier")
    ad.set_defaults(func=cmd_address)

    na = sub.add_parser("namespace-address", help="Print the namespace and proxy addresses")
    na.set_defaults(func=cmd_namespace_address)

    dbi = sub.add_parser("db-init", help="Initialize a SQLite record store")
    dbi.add_argument("--db", required=True, help="Path to SQLite DB file")
    dbi.set_defaults(func=cmd_db_init)

    dbs = sub.add_parser("db-show-record", help="Show the stored record for an owner id")
    dbs.add_argument("owner_id", help="Owner identifier")
    dbs.add_argument("--db", required=True, help="Path to SQLite DB file")
    dbs.set_defaults(func=cmd_db_show_record)

    dm = sub.add_parser("demo", help="Run the end-to-end registry walkthrough")
    dm.add_argument("--db", default=None, help="Optional SQLite DB path (default: in memory)")
    dm.add_argument("--admin", default="admin", help="Administrator principal id")
    dm.set_defaults(func=cmd_demo)

    # --- API server ---
    sv = sub.add_parser("serve", help="Run the capreg FastAPI server")
    sv.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    sv.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    sv.add_argument("--db", default=None, help="Optional SQLite DB path")
    sv.add_argument(
        "--uvicorn-log-level", dest="uvicorn_log_level", default="info", help="Uvicorn log level"
    )
    sv.set_defaults(func=cmd_serve)

    return p


def main(argv: List[str] | None = None) -> int:
    """CLI entry."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=str(args.log_level).upper())
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
