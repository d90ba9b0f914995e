"""
athena-deployer command line
============================
Applies a YAML deployment document to the Glue Data Catalog via Athena.

Usage:
  athena-deployer deploy --config athena.yml
  athena-deployer deploy --config athena.yml --database analytics --table events
  athena-deployer remove --config athena.yml --stack billing-prod

Exit codes: 0 success, 1 one or more resources failed, 2 bad configuration.
"""

import argparse
import logging
import sys
from typing import List, Optional

from .aws_clients import get_athena_client, get_glue_client
from .catalog import GlueAthenaCatalog
from .config import Settings, get_logger, set_log_level
from .deployer import Deployer
from .errors import ConfigurationError
from .loader import load_config

log = get_logger("athena_deployer.cli")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="athena-deployer",
        description="Reconcile Athena databases and tables with a declarative document.",
    )
    parser.add_argument("action", choices=("deploy", "remove"))
    parser.add_argument("--config", required=True, help="Path to the YAML deployment document.")
    parser.add_argument("--database", action="append", dest="databases",
                        help="Only handle this database (repeatable).")
    parser.add_argument("--table", action="append", dest="tables",
                        help="Only handle this table (repeatable).")
    parser.add_argument("--stack", help="Deployment identity stamped on resources.")
    parser.add_argument("--region", help="AWS region (defaults to AWS_REGION).")
    parser.add_argument("--snapshot-dir", help="Directory for partition snapshot files.")
    parser.add_argument("--max-parallel", type=int, help="Databases reconciled concurrently.")
    parser.add_argument("--no-orphans", dest="remove_orphans", action="store_false", default=None,
                        help="Never remove undeclared resources.")
    parser.add_argument("--sweep-on-filter", action="store_true", default=None,
                        help="Remove orphans even when --database/--table narrow the run.")
    parser.add_argument("--recover-partitions", action="store_true", default=None,
                        help="Replay snapshot files left behind by an interrupted run.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log SQL statements.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    if args.verbose:
        set_log_level(logging.DEBUG)

    try:
        config = load_config(args.config)
        settings = Settings.from_env(
            region=args.region,
            stack_id=args.stack,
            snapshot_dir=args.snapshot_dir,
            max_parallel=args.max_parallel,
            remove_orphans=args.remove_orphans,
            sweep_on_filter=args.sweep_on_filter,
            recover_partitions=args.recover_partitions,
        )
        client = GlueAthenaCatalog(
            get_glue_client(settings.region), get_athena_client(settings.region)
        )
        deployer = Deployer(settings, config, client)
        if args.action == "deploy":
            report = deployer.deploy(databases=args.databases, tables=args.tables)
        else:
            report = deployer.remove(databases=args.databases, tables=args.tables)
    except ConfigurationError as exc:
        log.error("Configuration error: %s", exc)
        return 2

    return 0 if report.ok else 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        log.exception("Unhandled exception in athena-deployer: %s", exc)
        sys.exit(1)
