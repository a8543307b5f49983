#!/usr/bin/env python3
"""
Operator utility for the remediation store: schema bootstrap, health and
read-only inspection of flags and their audit trail.
"""

import argparse
import json
import sys

from remediation.core.audit import list_audit_events
from remediation.core.config import get_db_path, validate_config
from remediation.core.dao import get_flag_detail
from remediation.core.db import health_check, init_db


def format_detail(detail) -> str:
    """Format a flag detail for display."""
    flag = detail.flag
    lines = [
        f"Flag: {flag.id}",
        f"Meeting: {flag.meeting_id}",
        f"Type: {flag.type}  Severity: {flag.severity}  Status: {flag.status}",
    ]
    if detail.resolution:
        lines.append(f"Resolution: {detail.resolution.resolution_type}")
        if detail.resolution.override_category:
            lines.append(f"Override category: {detail.resolution.override_category}")
        if detail.resolution.is_closed:
            lines.append(f"Closed: {detail.resolution.closed_at.isoformat()} by {detail.resolution.closed_by_user_id}")
    if detail.tasks:
        lines.append("Tasks:")
        for task in detail.tasks:
            marker = "x" if task.status == "COMPLETED" else " "
            required = "required" if task.required else "optional"
            lines.append(f"  [{marker}] {task.title} ({required}, due {task.due_date.date()})")
    if detail.evidence:
        lines.append("Evidence:")
        for item in detail.evidence:
            lines.append(f"  - {item.type} {item.label or item.url or ''}".rstrip())
    if detail.verifications:
        lines.append("Verifications:")
        for verification in detail.verifications:
            lines.append(f"  - {verification.decision} by {verification.reviewer_id}: {verification.note or ''}".rstrip())
    return "\n".join(lines)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Flag remediation store utility")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create tables and indexes")
    subparsers.add_parser("health", help="Check database and configuration health")

    show_parser = subparsers.add_parser("show", help="Show a flag with its remediation")
    show_parser.add_argument("flag_id")
    show_parser.add_argument("--workspace", required=True)
    show_parser.add_argument("--json", action="store_true", help="Output as JSON")

    audit_parser = subparsers.add_parser("audit", help="List audit events")
    audit_parser.add_argument("--workspace", required=True)
    audit_parser.add_argument("--flag", help="Only events for this flag")
    audit_parser.add_argument("--limit", type=int, default=50)

    args = parser.parse_args(argv)

    if args.command == "init-db":
        init_db()
        print(f"Initialized database at {get_db_path()}")
        return 0

    if args.command == "health":
        healthy = health_check()
        issues = validate_config()
        print(f"Database: {'healthy' if healthy else 'unhealthy'} ({get_db_path()})")
        for issue in issues:
            print(f"Config issue: {issue}")
        return 0 if healthy and not issues else 1

    if args.command == "show":
        detail = get_flag_detail(args.workspace, args.flag_id)
        if not detail:
            print(f"Flag {args.flag_id} not found in workspace {args.workspace}", file=sys.stderr)
            return 1
        if args.json:
            print(json.dumps(detail.to_dict(), indent=2))
        else:
            print(format_detail(detail))
        return 0

    if args.command == "audit":
        events = list_audit_events(args.workspace, resource_id=args.flag, limit=args.limit)
        for event in events:
            print(f"{event.created_at.isoformat()}  {event.action:<20} {event.resource_id}  by {event.user_id}")
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
