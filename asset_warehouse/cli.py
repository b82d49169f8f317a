"""Command-line entrypoints for the asset warehouse."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from . import config, gateway, reporting
from .errors import AssetNotFound, QueueSaturated, ValidationError
from .ledger import IndexLedger
from .models import KIND_MULTI_VIEW, KIND_SINGLE, PRIMARY_SLOT, SURFACE_SLOTS, UploadJob
from .search import DEFAULT_LIMIT, SearchService
from .storage import ContentStore
from .worker import Scheduler


def _configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s")


def _load_config(args) -> config.Config:
    cfg = config.Config.from_env()
    if args.data_dir is not None:
        cfg.data_root = Path(args.data_dir)
    if getattr(args, "workers", None):
        cfg.worker_count = args.workers
    return cfg


def _open_ledger(cfg: config.Config) -> IndexLedger:
    ledger = IndexLedger(cfg.data_root, lock_timeout=cfg.lock_timeout)
    ledger.initialize()
    return ledger


def _build_scheduler(cfg: config.Config):
    store = ContentStore(cfg.data_root, thumbnail_size=cfg.thumbnail_size)
    store.initialize()
    ledger = _open_ledger(cfg)
    scheduler = Scheduler(
        store,
        gateway.build_gateway(cfg),
        ledger,
        worker_count=cfg.worker_count,
        queue_size=cfg.queue_size,
    )
    return store, scheduler


def _print_outcome(record) -> None:
    if record.error:
        print(f"{record.asset_id}: {record.status} ({record.error})")
    else:
        location = record.file_path or record.folder_path
        print(f"{record.asset_id}: {record.status} -> {record.category} ({location})")


def cmd_init(args) -> None:
    cfg = _load_config(args)
    ContentStore(cfg.data_root).initialize()
    _open_ledger(cfg)
    print(f"Warehouse initialized at {cfg.data_root}")


def cmd_ingest(args) -> None:
    cfg = _load_config(args)
    store, scheduler = _build_scheduler(cfg)
    scheduler.start()
    accepted = []
    try:
        for image in args.images:
            asset_id, staged_path = store.stage_single_file(Path(image))
            job = UploadJob(
                asset_id=asset_id,
                kind=KIND_SINGLE,
                staged_paths={PRIMARY_SLOT: staged_path},
                title=args.title or Path(image).stem,
                artist=args.artist,
                tags=args.tag or [],
            )
            try:
                accepted.append(scheduler.submit(job).asset_id)
            except (ValidationError, QueueSaturated) as exc:
                store.discard_staged(staged_path)
                print(f"{image}: rejected ({exc})")
        scheduler.drain()
        for asset_id in accepted:
            _print_outcome(scheduler.get_status(asset_id))
    finally:
        scheduler.shutdown()


def cmd_ingest_set(args) -> None:
    cfg = _load_config(args)
    slot_files = {slot: Path(getattr(args, slot)) for slot in SURFACE_SLOTS if getattr(args, slot)}
    store, scheduler = _build_scheduler(cfg)
    model_file = Path(args.model) if args.model else None
    asset_id, staged_paths, model_path = store.stage_multi_view_files(slot_files, model_file)
    job = UploadJob(
        asset_id=asset_id,
        kind=KIND_MULTI_VIEW,
        staged_paths=staged_paths,
        title=args.title,
        artist=args.artist,
        tags=args.tag or [],
        staged_dir=store.temp_dir / asset_id,
        model_path=model_path,
        model_filename=model_file.name if model_file else None,
    )
    scheduler.start()
    try:
        try:
            scheduler.submit(job)
        except (ValidationError, QueueSaturated) as exc:
            store.discard_staged(job.staged_dir)
            raise SystemExit(f"Upload rejected: {exc}")
        _print_outcome(scheduler.wait(asset_id))
    finally:
        scheduler.shutdown()


def cmd_list(args) -> None:
    cfg = _load_config(args)
    entries = _open_ledger(cfg).list_entries(category=args.category)
    for entry in entries:
        print(f"{entry.asset_id}  {entry.category:<20} {entry.kind:<15} {entry.title} ({entry.artist})")
    print(f"{len(entries)} asset(s)")


def cmd_show(args) -> None:
    cfg = _load_config(args)
    try:
        entry = _open_ledger(cfg).get(args.asset_id)
    except AssetNotFound:
        raise SystemExit(f"Asset {args.asset_id} not found")
    print(f"ID:          {entry.asset_id}")
    print(f"Title:       {entry.title}")
    print(f"Artist:      {entry.artist}")
    print(f"Uploaded:    {entry.uploaded_at}")
    print(f"Kind:        {entry.kind}")
    print(f"Category:    {entry.category}")
    if entry.file_path:
        print(f"File:        {entry.file_path}")
        print(f"Thumbnail:   {entry.thumbnail_path}")
    if entry.folder_path:
        print(f"Folder:      {entry.folder_path}")
        if entry.model_file_path:
            print(f"Model:       {entry.model_file_path} ({entry.model_filename})")
        for slot, path in entry.views.items():
            print(f"  {slot}: {path}")
    if entry.tags:
        print(f"Tags:        {', '.join(entry.tags)}")
    if entry.description:
        print(f"Description: {entry.description}")


def cmd_search(args) -> None:
    cfg = _load_config(args)
    service = SearchService(_open_ledger(cfg), gateway.build_gateway(cfg))
    response = service.search(args.query, limit=args.limit)
    for match in response.results:
        print(f"{match.relevance_score:.2f}  {match.asset_id}  {match.reason}")
    print(f"{response.total} result(s) for {response.query!r}")


def cmd_report(args) -> None:
    cfg = _load_config(args)
    report_data = reporting.generate_report(_open_ledger(cfg))
    print(reporting.format_report(report_data))


def cmd_explain_structure(args) -> None:
    cfg = _load_config(args)
    print(reporting.render_folder_structure_table(cfg.data_root))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Asset warehouse CLI")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Root folder for the ledger and stored assets (default: $DATA_DIR or ./data)",
    )

    upload = argparse.ArgumentParser(add_help=False)
    upload.add_argument("--artist", required=True, help="Artist or creator")
    upload.add_argument("--tag", action="append", help="Manual tag (repeatable)")
    upload.add_argument("--workers", type=int, help="Number of worker threads")

    init_parser = subparsers.add_parser("init", parents=[common], help="Create the data folders and ledger")
    init_parser.set_defaults(func=cmd_init)

    ingest_parser = subparsers.add_parser("ingest", parents=[common, upload], help="Ingest single images")
    ingest_parser.add_argument("images", nargs="+", help="Image files to ingest")
    ingest_parser.add_argument("--title", help="Title (default: file name)")
    ingest_parser.set_defaults(func=cmd_ingest)

    set_parser = subparsers.add_parser("ingest-set", parents=[common, upload], help="Ingest a multi-view set")
    set_parser.add_argument("--title", required=True, help="Title")
    for slot in SURFACE_SLOTS:
        set_parser.add_argument(f"--{slot}", help=f"Image of the {slot} view")
    set_parser.add_argument("--model", help="Optional raw 3D model file")
    set_parser.set_defaults(func=cmd_ingest_set)

    list_parser = subparsers.add_parser("list", parents=[common], help="List ledger entries")
    list_parser.add_argument("--category", help="Only show this category")
    list_parser.set_defaults(func=cmd_list)

    show_parser = subparsers.add_parser("show", parents=[common], help="Show one ledger entry")
    show_parser.add_argument("asset_id", help="Asset ID")
    show_parser.set_defaults(func=cmd_show)

    search_parser = subparsers.add_parser("search", parents=[common], help="Natural-language search")
    search_parser.add_argument("query", help="Free-text query")
    search_parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="Maximum number of results")
    search_parser.set_defaults(func=cmd_search)

    report_parser = subparsers.add_parser("report", parents=[common], help="Summarize the ledger")
    report_parser.set_defaults(func=cmd_report)

    explain_parser = subparsers.add_parser("explain-structure", parents=[common], help="Describe the folder layout")
    explain_parser.set_defaults(func=cmd_explain_structure)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
