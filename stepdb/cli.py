"""
Command line entry point for the STEP document store.

Usage:
    stepdb ingest /path/to/1000410-28L.stp
    stepdb publish 1000410-28L
    stepdb download 1000410-28l 1000410-28L_v1.stp ./1000410-28L_v1.stp
    stepdb export 1000410-28L --output ./1000410-28L.stp
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from stepdb.pipeline import (
    RQJobQueue,
    StepDBError,
    WorkerConfig,
    build_worker,
    compose_key,
    count_namespaces,
)


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stepdb", description="STEP document key-value store")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL of the store")
    parser.add_argument("--data-root", default=None, type=Path, help="Root for uploads and exports")
    parser.add_argument("--batch-size", default=None, type=int, help="Entries per committed batch")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Parse a STEP file into the store")
    ingest.add_argument("path", type=Path)
    ingest.add_argument("--namespace", default=None, help="Defaults to the file name without extension")

    export = sub.add_parser("export", help="Rebuild a document into a local file")
    export.add_argument("prefix")
    export.add_argument("--output", type=Path, default=None)

    publish = sub.add_parser("publish", help="Upload a new version of a document to object storage")
    publish.add_argument("prefix")
    publish.add_argument("--bucket", default=None)

    download = sub.add_parser("download", help="Fetch an object from object storage")
    download.add_argument("bucket")
    download.add_argument("object_name")
    download.add_argument("path", type=Path)

    get = sub.add_parser("get", help="Print one stored definition")
    get.add_argument("namespace")
    get.add_argument("record_id")

    delete = sub.add_parser("delete", help="Delete one stored definition")
    delete.add_argument("namespace")
    delete.add_argument("record_id")

    sub.add_parser("namespaces", help="List namespaces and entry counts")
    rq_worker = sub.add_parser("rq-worker", help="Run an RQ worker for queued pipeline jobs")
    rq_worker.add_argument("--redis-url", default=None, help="Overrides STEPDB_REDIS_URL")
    return parser


def _config_from_args(args: argparse.Namespace) -> WorkerConfig:
    config = WorkerConfig.from_env()
    overrides = {}
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.data_root:
        overrides["data_root"] = str(args.data_root)
    if args.batch_size:
        overrides["batch_size"] = args.batch_size
    if getattr(args, "redis_url", None):
        overrides["redis_url"] = args.redis_url
    return replace(config, **overrides)


def run(args: argparse.Namespace, config: WorkerConfig) -> int:
    if args.command == "rq-worker":
        queue = RQJobQueue.from_config(config)
        if queue is None:
            raise RuntimeError("No Redis URL: set STEPDB_REDIS_URL or pass --redis-url")
        queue.work()
        return 0

    worker = build_worker(config)
    try:
        if args.command == "ingest":
            result = worker.ingest_file(args.path, namespace=args.namespace)
            print(f"Stored {result.records_written} records under {result.namespace}")
        elif args.command == "export":
            result = worker.export_file(args.prefix, args.output)
            print(f"Exported {result.records_written} records to {result.destination}")
        elif args.command == "publish":
            result = worker.publish(args.prefix, args.bucket)
            print(f"Published {result.records_written} records to {result.destination}")
        elif args.command == "download":
            path = worker.download(args.bucket, args.object_name, args.path)
            print(f"Downloaded to {path}")
        elif args.command == "get":
            value = worker.store.get(compose_key(args.namespace, args.record_id))
            if value is None:
                print(f"Not found: {args.namespace}_{args.record_id}", file=sys.stderr)
                return 1
            print(f"#{args.record_id}={value.decode('utf-8', 'replace')};")
        elif args.command == "delete":
            worker.store.delete(compose_key(args.namespace, args.record_id))
        elif args.command == "namespaces":
            for namespace, count in sorted(count_namespaces(worker.store).items()):
                print(f"{namespace}\t{count}")
    finally:
        worker.store.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    config = _config_from_args(args)
    try:
        return run(args, config)
    except (StepDBError, OSError, RuntimeError, ValueError) as exc:
        logging.getLogger("stepdb").error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
