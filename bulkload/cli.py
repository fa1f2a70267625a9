#!/usr/bin/env python3
"""Command line entry point: bulkload [OPTIONS] FILE."""
import argparse
import cProfile
import logging
import sys
import tracemalloc
from typing import List, Optional

from . import __version__
from .config import DEFAULT_BATCH_SIZE, LoadConfiguration, default_workers, parse_credentials
from .es_client import ES_API_KEY, ES_REQUEST_TIMEOUT, ES_URL, ES_USER, ES_VERIFY_TLS, get_client
from .exceptions import BulkLoadError
from .lifecycle import run_load
from .source import iter_records, open_input

logger = logging.getLogger("bulkload")

MEMPROFILE_TOP = 25


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bulkload",
        description="Bulk index newline-delimited JSON into Elasticsearch.",
    )
    parser.add_argument("file", nargs="?", help="NDJSON input file, - for stdin")
    parser.add_argument("-v", "--version", action="store_true", help="print version and exit")
    parser.add_argument("--index", default="", help="index name")
    parser.add_argument("--type", dest="doc_type", default=None,
                        help="document type label for the action line (omit for typeless clusters)")
    parser.add_argument("--server", default=ES_URL,
                        help=f"elasticsearch server, http or https (default: {ES_URL})")
    parser.add_argument("--size", type=int, default=DEFAULT_BATCH_SIZE, help="bulk batch size")
    parser.add_argument("-w", "--workers", type=int, default=default_workers(),
                        help="number of workers to use")
    parser.add_argument("--id", dest="id_field", default=None,
                        help="name of field to use as id field, by default ids are autogenerated")
    parser.add_argument("--verbose", action="store_true", help="output basic progress")
    parser.add_argument("-z", "--gzip", dest="gzipped", action="store_true",
                        help="unzip gz'd file on the fly")
    parser.add_argument("--mapping", default=None,
                        help="mapping string or filename to apply before indexing")
    parser.add_argument("--purge", action="store_true",
                        help="purge any existing index before indexing")
    parser.add_argument("-u", "--user", default=ES_USER,
                        help="http basic auth username:password, like curl -u")
    parser.add_argument("--cpuprofile", default=None, help="write cpu profile to file")
    parser.add_argument("--memprofile", default=None, help="write heap profile to file")
    return parser


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # per-request transport logs drown out the progress lines
    logging.getLogger("elastic_transport").setLevel(logging.WARNING)


def config_from_args(args: argparse.Namespace) -> LoadConfiguration:
    username, password = parse_credentials(args.user)
    return LoadConfiguration(
        index=args.index,
        server=args.server,
        doc_type=args.doc_type,
        batch_size=args.size,
        workers=args.workers,
        id_field=args.id_field,
        username=username,
        password=password,
        api_key=None if username else ES_API_KEY,
        verify_certs=ES_VERIFY_TLS,
        request_timeout=ES_REQUEST_TIMEOUT,
        verbose=args.verbose,
        purge=args.purge,
        mapping=args.mapping,
    )


def _write_memprofile(path: str) -> None:
    snapshot = tracemalloc.take_snapshot()
    with open(path, "w", encoding="utf-8") as f:
        for stat in snapshot.statistics("lineno")[:MEMPROFILE_TOP]:
            f.write(f"{stat}\n")


def load(args: argparse.Namespace) -> None:
    config = config_from_args(args)
    client = get_client(config)
    with open_input(args.file, args.gzipped) as stream:
        summary = run_load(client, config, iter_records(stream))
    if config.verbose:
        logger.info("%s", summary)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return 0
    if not args.file:
        parser.print_usage(sys.stderr)
        return 1

    setup_logging(args.verbose)
    profiler = cProfile.Profile() if args.cpuprofile else None
    if args.memprofile:
        tracemalloc.start()
    try:
        if profiler:
            profiler.enable()
        load(args)
    except BulkLoadError as e:
        logger.error("%s", e)
        return 1
    finally:
        if profiler:
            profiler.disable()
            profiler.dump_stats(args.cpuprofile)
        if args.memprofile:
            _write_memprofile(args.memprofile)
            tracemalloc.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
