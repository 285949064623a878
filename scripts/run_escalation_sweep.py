#!/usr/bin/env python3
"""
Run one escalation sweep (and completion retry pass) against a database.

Force-advances every in-progress approval chain whose cutoff date has
passed, then re-drives completion for completed chains that are missing
their execution record.  Commits once at the end.

Usage:
  python3 scripts/run_escalation_sweep.py [--database-url URL] [--config-dir DIR]
      [--config-set NAME] [--as-of YYYY-MM-DD] [--create-tables]

The database URL defaults to the APPROVAL_DATABASE_URL environment variable,
then to the configuration set's engine.database_url.
"""

import argparse
import os
import sys
from datetime import UTC, datetime, time
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run one approval escalation sweep")
    p.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: APPROVAL_DATABASE_URL or config engine.database_url)",
    )
    p.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory holding configuration sets (default: packaged sets)",
    )
    p.add_argument(
        "--config-set",
        default="default",
        help="Configuration set name (default: %(default)s)",
    )
    p.add_argument(
        "--as-of",
        default=None,
        help="Sweep as of this date (YYYY-MM-DD) instead of now",
    )
    p.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before sweeping",
    )
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from approval_config import get_active_config
    from approval_kernel.db.engine import (
        create_tables,
        init_engine_from_url,
        session_scope,
    )
    from approval_kernel.domain.roles import StaticRoleDirectory
    from approval_kernel.logging_config import configure_logging
    from approval_services.engine import WorkflowEngine

    configure_logging()

    try:
        config = get_active_config(args.config_dir, args.config_set)
    except (FileNotFoundError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    url = (
        args.database_url
        or os.environ.get("APPROVAL_DATABASE_URL")
        or config.engine.database_url
    )
    if not url:
        print("  ERROR: no database URL configured", file=sys.stderr)
        return 1

    now = None
    if args.as_of:
        as_of = datetime.strptime(args.as_of, "%Y-%m-%d").date()
        now = datetime.combine(as_of, time(12, 0), tzinfo=UTC)

    init_engine_from_url(url)
    if args.create_tables:
        create_tables()

    # Forced escalation does not consult role membership.
    with session_scope() as session:
        engine = WorkflowEngine(session, config, StaticRoleDirectory())
        summary = engine.run_escalation_sweep(now)
        retry = engine.retry_completions()

    print(f"  scanned:   {summary.scanned}")
    print(f"  escalated: {summary.escalated}")
    print(f"  completed: {summary.completed}")
    print(f"  skipped:   {summary.skipped}")
    print(f"  no next approver: {summary.no_next_approver}")
    print(f"  errors:    {summary.errors}")
    for detail in summary.details:
        if detail.message:
            print(f"    {detail.instance_id} {detail.status.value}: {detail.message}")
    if retry.scanned:
        print(f"  completion retries: {retry.created} created, {retry.failed} failed")

    return 1 if summary.errors or retry.failed else 0


if __name__ == "__main__":
    sys.exit(main())
