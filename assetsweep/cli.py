from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from assetsweep.config import Settings, apply_config, load_config, load_settings
from assetsweep.engine import BatchScheduler, JobManager
from assetsweep.errors import JobNotFoundError, PermissionDeniedError
from assetsweep.log import setup_logging
from assetsweep.models import AssetType, JobStatus, ScanJobRequest
from assetsweep.oui import load_oui_map
from assetsweep.probe import ProbeEngine
from assetsweep.reconcile import AssetReconciler
from assetsweep.report import FORMATS, export_inventory
from assetsweep.resources import ResourceController
from assetsweep.storage import Database
from assetsweep.targets import expand_segment
from assetsweep.windows import default_cascade

_SETTINGS: Settings = Settings()


def _fmt_time(ts: Optional[float]) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _database(args: argparse.Namespace) -> Database:
    return Database(args.db or _SETTINGS.db_path)


def _build_manager(args: argparse.Namespace, controller: ResourceController) -> JobManager:
    db = _database(args)
    oui_file = getattr(args, "oui_file", None) or _SETTINGS.inventory.oui_file
    probe_engine = ProbeEngine(
        results=db,
        reconciler=AssetReconciler(db),
        cascade=default_cascade(_SETTINGS.windows, _SETTINGS.scan.port_timeout),
        settings=_SETTINGS.scan,
        oui_map=load_oui_map(oui_file),
    )
    scheduler = BatchScheduler(db, probe_engine, controller, _SETTINGS.scan.queue_capacity)
    return JobManager(db, db, scheduler)


def _load_job_file(path_text: str) -> Dict[str, Any]:
    path = Path(path_text)
    if not path.exists():
        raise SystemExit(f"job file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise SystemExit(f"invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise SystemExit(f"job file must contain a mapping: {path}")
    return data


def _build_request(args: argparse.Namespace) -> ScanJobRequest:
    data: Dict[str, Any] = _load_job_file(args.file) if args.file else {}
    addresses = list(data.get("targets") or []) + list(args.target or [])
    segments = list(data.get("segments") or []) + list(args.segment or [])
    if not addresses and not segments:
        raise SystemExit("at least one --target, --segment or job file entry is required")
    try:
        return ScanJobRequest(
            name=args.name or data.get("name") or f"scan {datetime.now():%Y-%m-%d %H:%M}",
            description=args.description or data.get("description"),
            ip_addresses=[str(a) for a in addresses],
            ip_segments=[str(s) for s in segments],
            recurring=args.recurring or bool(data.get("recurring", False)),
            schedule=args.schedule or data.get("schedule"),
        )
    except ValidationError as e:
        raise SystemExit(f"invalid scan job: {e}")


def _print_progress(job) -> None:
    print(
        f"[*] {job.status.value:<9} {job.completed_targets}/{job.total_targets} "
        f"(ok {job.successful_targets}, failed {job.failed_targets})"
    )


def cmd_scan(args: argparse.Namespace) -> None:
    request = _build_request(args)
    controller = ResourceController(interval=_SETTINGS.resources.interval)
    manager = _build_manager(args, controller)
    job = manager.create_job(request, args.owner)
    print(f"[*] Created scan job {job.id} ({job.name}) with {job.total_targets} targets")

    controller.start()
    try:
        manager.start(job.id)
        while True:
            try:
                manager.wait(job.id, timeout=args.poll_interval)
                job = manager.get_job(job.id)
                _print_progress(job)
                if job.status.terminal:
                    break
            except KeyboardInterrupt:
                print("\n[!] Cancelling scan job, finishing the current batch...")
                manager.cancel(job.id, args.owner)
                manager.wait(job.id)
                job = manager.get_job(job.id)
                _print_progress(job)
                break
    finally:
        controller.stop()
    print(f"[*] Scan job {job.id} finished: {job.status.value}")


def cmd_jobs(args: argparse.Namespace) -> None:
    db = _database(args)
    status = JobStatus(args.status.upper()) if args.status else None
    jobs = db.list_jobs(owner=args.owner if not args.all else None, status=status)
    if not jobs:
        print("No scan jobs.")
        return
    print(f"{'ID':<34} {'NAME':<24} {'STATUS':<10} {'PROGRESS':<12} {'CREATED':<19} NEXT RUN")
    for job in jobs:
        progress = f"{job.completed_targets}/{job.total_targets}"
        print(
            f"{job.id:<34} {job.name[:24]:<24} {job.status.value:<10} {progress:<12} "
            f"{_fmt_time(job.created_at):<19} {_fmt_time(job.next_run_at)}"
        )


def cmd_results(args: argparse.Namespace) -> None:
    db = _database(args)
    db.get_job(args.job_id)
    results = db.list_results(job_id=args.job_id)
    if args.json:
        payload = [r.model_dump(mode="json") for r in results]
        Path(args.json).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"[*] Wrote {len(results)} results to {args.json}")
        return
    for result in results:
        state = "ok" if result.successful else f"failed: {result.error}"
        print(f"{result.address:<16} {result.hostname or '-':<32} {state}")


def cmd_assets(args: argparse.Namespace) -> None:
    db = _database(args)
    asset_type = AssetType(args.type.upper()) if args.type else None
    assets = db.list_assets(asset_type=asset_type, online=args.online)
    if args.json:
        payload = [a.model_dump(mode="json") for a in assets]
        Path(args.json).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"[*] Wrote {len(assets)} assets to {args.json}")
        return
    if not assets:
        print("No assets.")
        return
    for asset in assets:
        print(
            f"{asset.address:<16} {asset.hostname or '-':<28} {asset.asset_type.value:<15} "
            f"{asset.operating_system:<24} {'online' if asset.online else 'offline'}"
        )


def cmd_cancel(args: argparse.Namespace) -> None:
    db = _database(args)
    manager = JobManager(db, db)
    job = manager.cancel(args.job_id, args.owner)
    print(f"[*] Scan job {job.id}: {job.status.value}")


def cmd_delete(args: argparse.Namespace) -> None:
    db = _database(args)
    manager = JobManager(db, db)
    manager.delete_job(args.job_id, args.owner)
    print(f"[*] Deleted scan job {args.job_id}")


def cmd_expand(args: argparse.Namespace) -> None:
    for segment in args.segment:
        addresses = expand_segment(segment)
        if args.count:
            print(f"{segment}: {len(addresses)}")
            continue
        for address in addresses:
            print(address)


def cmd_resources(args: argparse.Namespace) -> None:
    controller = ResourceController(interval=_SETTINGS.resources.interval)
    snapshot = controller.snapshot
    for _ in range(args.samples):
        time.sleep(args.interval)
        snapshot = controller.adjust()
    print(f"cores:        {controller.core_count}")
    print(f"threads:      {snapshot.thread_count}")
    print(f"batch size:   {snapshot.batch_size}")
    if snapshot.cpu_load is not None:
        print(f"cpu load:     {snapshot.cpu_load:.0%}")
    if snapshot.memory_load is not None:
        print(f"memory load:  {snapshot.memory_load:.0%}")


def cmd_report(args: argparse.Namespace) -> None:
    db = _database(args)
    asset_type = AssetType(args.type.upper()) if args.type else None
    assets = db.list_assets(asset_type=asset_type)
    outputs = export_inventory(assets, args.format, args.output)
    for path in outputs:
        print(f"[*] Wrote {path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assetsweep",
        description="Adaptive network discovery and asset inventory.",
    )
    parser.add_argument("--db", help="SQLite database path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version="assetsweep 0.1.0")
    subparsers = parser.add_subparsers(dest="command", required=True)

    asset_types = [t.value.lower() for t in AssetType]
    statuses = [s.value.lower() for s in JobStatus]
    default_owner = getpass.getuser()

    scan_parser = subparsers.add_parser("scan", help="Create and run a scan job")
    scan_parser.add_argument("--target", action="append", help="Address or hostname (repeatable)")
    scan_parser.add_argument("--segment", action="append", help="Range such as 10.0.0.0/24 or 10.0.0.5-20 (repeatable)")
    scan_parser.add_argument("--file", help="YAML job file (name, targets, segments, recurring, schedule)")
    scan_parser.add_argument("--name", help="Job name")
    scan_parser.add_argument("--description", help="Job description")
    scan_parser.add_argument("--recurring", action="store_true", help="Schedule the job to run again every 24h")
    scan_parser.add_argument("--schedule", help="Free-form schedule note stored with the job")
    scan_parser.add_argument("--owner", default=default_owner, help="Job owner")
    scan_parser.add_argument("--oui-file", help="CSV file with OUI,Vendor entries")
    scan_parser.add_argument("--poll-interval", type=float, default=2.0, help="Seconds between progress lines")
    scan_parser.set_defaults(func=cmd_scan)

    jobs_parser = subparsers.add_parser("jobs", help="List scan jobs")
    jobs_parser.add_argument("--owner", default=default_owner, help="Only jobs of this owner")
    jobs_parser.add_argument("--all", action="store_true", help="Jobs of every owner")
    jobs_parser.add_argument("--status", choices=statuses, help="Filter by status")
    jobs_parser.set_defaults(func=cmd_jobs)

    results_parser = subparsers.add_parser("results", help="Show the results of a scan job")
    results_parser.add_argument("job_id", help="Scan job ID")
    results_parser.add_argument("--json", help="Write results to JSON")
    results_parser.set_defaults(func=cmd_results)

    assets_parser = subparsers.add_parser("assets", help="List discovered assets")
    assets_parser.add_argument("--type", choices=asset_types, help="Filter by asset type")
    online_group = assets_parser.add_mutually_exclusive_group()
    online_group.add_argument("--online", dest="online", action="store_const", const=True, help="Only online assets")
    online_group.add_argument("--offline", dest="online", action="store_const", const=False, help="Only offline assets")
    assets_parser.add_argument("--json", help="Write assets to JSON")
    assets_parser.set_defaults(func=cmd_assets, online=None)

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a running scan job")
    cancel_parser.add_argument("job_id", help="Scan job ID")
    cancel_parser.add_argument("--owner", default=default_owner, help="Job owner")
    cancel_parser.set_defaults(func=cmd_cancel)

    delete_parser = subparsers.add_parser("delete", help="Delete a scan job and its results")
    delete_parser.add_argument("job_id", help="Scan job ID")
    delete_parser.add_argument("--owner", default=default_owner, help="Job owner")
    delete_parser.set_defaults(func=cmd_delete)

    expand_parser = subparsers.add_parser("expand", help="Print the addresses a segment expands to")
    expand_parser.add_argument("segment", nargs="+", help="Segment to expand")
    expand_parser.add_argument("--count", action="store_true", help="Only print the number of addresses")
    expand_parser.set_defaults(func=cmd_expand)

    resources_parser = subparsers.add_parser("resources", help="Show the current concurrency tuning")
    resources_parser.add_argument("--samples", type=int, default=1, help="Load samples to take before printing")
    resources_parser.add_argument("--interval", type=float, default=1.0, help="Seconds between samples")
    resources_parser.set_defaults(func=cmd_resources)

    report_parser = subparsers.add_parser("report", help="Export the asset inventory")
    report_parser.add_argument("--format", choices=FORMATS, default="md", help="Output format")
    report_parser.add_argument("--output", required=True, help="Output path")
    report_parser.add_argument("--type", choices=asset_types, help="Only assets of this type")
    report_parser.set_defaults(func=cmd_report)

    return parser


def _apply_config_all(parser: argparse.ArgumentParser, config: Dict[str, Any]) -> None:
    apply_config(parser, config)
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            for subparser in action.choices.values():
                apply_config(subparser, config)


def main(argv: list[str] | None = None) -> int:
    global _SETTINGS
    parser = build_parser()
    config = load_config()
    _SETTINGS = load_settings(config)
    _apply_config_all(parser, config)
    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        args.func(args)
    except (JobNotFoundError, PermissionDeniedError) as e:
        raise SystemExit(str(e))
    return 0


if __name__ == "__main__":
    sys.exit(main())
