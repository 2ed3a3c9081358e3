#!/usr/bin/env python3
"""
Inspect and reset request sequence counters.

Counters are keyed by (request type, calendar day).  A reset is audited
as SEQUENCE_RESET under the acting administrator's id.

Usage:
    python3 scripts/manage_sequences.py list [--type MAF]
    python3 scripts/manage_sequences.py reset MAF 2026-02-09 --value 0 --actor-id <uuid>

Resetting below a value that was already issued makes the next creation
for that day fail on the unique sequence number.
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import get_active_config
from approval_kernel.db.engine import get_session_factory, init_engine_from_url
from approval_kernel.domain.roles import Role
from approval_kernel.domain.workflow import Principal
from approval_kernel.exceptions import ApprovalKernelError
from approval_services.workflow_orchestrator import WorkflowOrchestrator

# Stable id used when no --actor-id is given
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Manage request sequence counters")
    p.add_argument("--config", default=None, help="Engine YAML file (default: active config)")
    p.add_argument("--db-url", default=None, help="Database URL (default: storage.database_url)")
    p.add_argument("--actor-id", type=UUID, default=SYSTEM_ACTOR_ID, help="Administrator principal id")

    sub = p.add_subparsers(dest="command", required=True)

    ls = sub.add_parser("list", help="List counters, newest day first")
    ls.add_argument("--type", dest="sequence_type", default=None, help="Only this request type")

    rs = sub.add_parser("reset", help="Set one counter")
    rs.add_argument("sequence_type", help="Request type, e.g. MAF")
    rs.add_argument("date_key", help="Calendar day, YYYY-MM-DD")
    rs.add_argument("--value", type=int, default=0, help="New counter value (default: 0)")
    return p.parse_args()


def main() -> int:
    args = _parse_args()
    config = get_active_config(args.config)
    init_engine_from_url(
        args.db_url or config.storage.database_url,
        statement_timeout_seconds=config.storage.statement_timeout_seconds,
    )
    orchestrator = WorkflowOrchestrator(session_factory=get_session_factory(), config=config)
    admin = Principal(principal_id=args.actor_id, role=Role.ADMIN)

    try:
        if args.command == "list":
            counters = orchestrator.list_sequence_counters(admin, args.sequence_type)
            if not counters:
                print("  No counters.")
            for c in counters:
                print(f"  {c.sequence_type:<10} {c.date_key}  {c.current_value:>6}")
        else:
            previous = orchestrator.reset_sequence_counter(
                admin, args.sequence_type, args.date_key, args.value,
            )
            print(f"  {args.sequence_type} {args.date_key}: {previous} -> {args.value}")
    except (ApprovalKernelError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
