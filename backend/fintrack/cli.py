"""CLI entry point for CSV imports.

Commands:
    fintrack-import headers FILE          Show CSV headers and the guessed mapping
    fintrack-import submit FILE [--wait]  Submit a CSV import (mapping flags override guesses)
    fintrack-import status JOB_ID         Show one job
    fintrack-import watch JOB_ID          Poll a job until it completes or fails
    fintrack-import list [--limit N]      List recent jobs
    fintrack-import delete JOB_ID         Delete a job record
    fintrack-import init-db               Create database tables
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any

import httpx

from fintrack.core.exceptions import CsvParseError

logger = logging.getLogger(__name__)

ROLES = ("date", "amount", "description", "type", "category", "account")


def _read_csv(path: str) -> str:
    from fintrack.services.csv_ingest import decode_csv_bytes

    return decode_csv_bytes(Path(path).read_bytes())


def _client(args: argparse.Namespace):
    from fintrack.client.api_client import ImportApiClient

    if not args.user:
        raise SystemExit("A user id is required (--user or FINTRACK_USER_ID)")
    return ImportApiClient(args.api_url, args.user)


def _format_job(job: dict[str, Any]) -> str:
    line = (
        f"{job['id']}  {job['filename']}  {job['status']:<10} {job.get('progress', 0):>3}%  "
        f"ok={job.get('success_rows', 0)} errors={job.get('error_rows', 0)} "
        f"total={job.get('total_rows', 0)}"
    )
    if job.get("status") == "FAILED" and job.get("error_message"):
        line += f"  ({job['error_message']})"
    return line


def _print_errors(job: dict[str, Any]) -> None:
    for detail in job.get("error_details") or []:
        print(f"  row {detail['row']}: {detail['error']}")
    if job.get("omitted_errors"):
        print(f"  ... and {job['omitted_errors']} more")


def _watch(client, job_id: str, interval: float) -> int:
    from fintrack.client.poller import poll_until_done

    def on_update(job: dict[str, Any]) -> None:
        print(f"{job['status']:<10} {job.get('progress', 0):>3}%  {job.get('message') or ''}")

    job = poll_until_done(client, job_id, interval=interval, on_update=on_update)
    print(_format_job(job))
    _print_errors(job)
    # Refresh the job list once the job is terminal
    recent = client.list_jobs()
    print(f"{len(recent)} recent import job(s)")
    return 0 if job["status"] == "COMPLETED" else 1


def cmd_headers(args: argparse.Namespace) -> int:
    from fintrack.client.mapping import guess_mapping
    from fintrack.services.csv_ingest import read_headers

    headers = read_headers(_read_csv(args.file))
    print("Headers: " + ", ".join(headers))
    for role, header in guess_mapping(headers).items():
        print(f"  {role:<12} -> {header}")
    return 0


def cmd_submit(args: argparse.Namespace) -> int:
    from fintrack.client.mapping import guess_mapping, missing_required
    from fintrack.services.csv_ingest import read_headers

    csv_data = _read_csv(args.file)
    mapping = guess_mapping(read_headers(csv_data))
    for role in ROLES:
        value = getattr(args, role)
        if value:
            mapping[role] = value
    missing = missing_required(mapping)
    if missing:
        print(f"Map at least the {' and '.join(missing)} column(s)", file=sys.stderr)
        return 2

    with _client(args) as client:
        job = client.submit_import(Path(args.file).name, csv_data, mapping)
        print(f"Import started: {job['id']} ({job['status']})")
        if args.wait:
            return _watch(client, job["id"], args.interval)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    with _client(args) as client:
        job = client.get_job(args.job_id)
        if job is None:
            print(f"Job {args.job_id} not found", file=sys.stderr)
            return 1
        print(_format_job(job))
        _print_errors(job)
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    with _client(args) as client:
        return _watch(client, args.job_id, args.interval)


def cmd_list(args: argparse.Namespace) -> int:
    with _client(args) as client:
        for job in client.list_jobs(args.limit):
            print(_format_job(job))
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    with _client(args) as client:
        if not client.delete_job(args.job_id):
            print(f"Job {args.job_id} not found", file=sys.stderr)
            return 1
    print(f"Deleted {args.job_id}")
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    from fintrack.db.init_db import init_db
    from fintrack.db.session import engine

    init_db(engine)
    return 0


def build_parser() -> argparse.ArgumentParser:
    from fintrack.core.config import get_settings

    settings = get_settings()
    parser = argparse.ArgumentParser(prog="fintrack-import", description="CSV bank-statement imports")
    parser.add_argument("--api-url", default=settings.api_base_url)
    parser.add_argument("--user", default=os.environ.get("FINTRACK_USER_ID"))
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("headers", help="Show CSV headers and the guessed mapping")
    p.add_argument("file")
    p.set_defaults(func=cmd_headers)

    p = sub.add_parser("submit", help="Submit a CSV import")
    p.add_argument("file")
    for role in ROLES:
        p.add_argument(f"--{role}", help=f"CSV header for the {role} column")
    p.add_argument("--wait", action="store_true", help="Poll until the job finishes")
    p.add_argument("--interval", type=float, default=settings.poll_interval)
    p.set_defaults(func=cmd_submit)

    p = sub.add_parser("status", help="Show one job")
    p.add_argument("job_id")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("watch", help="Poll a job until it finishes")
    p.add_argument("job_id")
    p.add_argument("--interval", type=float, default=settings.poll_interval)
    p.set_defaults(func=cmd_watch)

    p = sub.add_parser("list", help="List recent jobs")
    p.add_argument("--limit", type=int, default=None)
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("delete", help="Delete a job record")
    p.add_argument("job_id")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("init-db", help="Create database tables")
    p.set_defaults(func=cmd_init_db)

    return parser


def main(argv: list[str] | None = None) -> int:
    from fintrack.core.config import get_settings
    from fintrack.core.logging_setup import configure_logging

    configure_logging(get_settings().log_level)
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except httpx.HTTPStatusError as e:
        print(f"API error {e.response.status_code}: {e.response.text}", file=sys.stderr)
        return 1
    except httpx.HTTPError as e:
        print(f"Could not reach {args.api_url}: {e}", file=sys.stderr)
        return 1
    except LookupError as e:
        print(str(e), file=sys.stderr)
        return 1
    except (CsvParseError, ValueError, OSError) as e:
        print(f"Cannot read CSV: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
