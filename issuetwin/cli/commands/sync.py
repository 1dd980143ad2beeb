"""Sync commands: pull, plan, apply and clean."""

import logging
import sys
from typing import TYPE_CHECKING

from issuetwin.cli.commands.helpers import confirm, print_json, print_outcomes, report
from issuetwin.diff import render_plan

if TYPE_CHECKING:
    from issuetwin import IssueTwin

logger = logging.getLogger(__name__)


def cmd_pull(args, twin: "IssueTwin"):
    """Pull configured patterns, or specific records when keys are given."""
    if args.keys:
        result = twin.pull_keys(args.keys, host=args.host)
    else:
        if not twin.config.hosts:
            print("No hosts configured. Add one to config.yaml in the issuetwin home.")
            sys.exit(1)
        if args.full:
            print("🔄 Full refresh")
        result = twin.pull(host=args.host, full=args.full)

    print_outcomes(result.outcomes)
    ok = report(result, f"Pulled {result.pulled} record(s)")
    if not ok:
        sys.exit(1)


def cmd_plan(args, twin: "IssueTwin"):
    """Show what apply would push."""
    plan = twin.plan(host=args.host)

    if args.json:
        print_json(plan.to_dict())
        return

    if not plan.entries:
        print("No pending changes.")
        return

    for line in render_plan(plan):
        print(line)


def cmd_apply(args, twin: "IssueTwin"):
    """Push pending changes, then re-sync the touched records."""
    plan = twin.plan(host=args.host)
    if not plan.entries:
        print("No pending changes to apply.")
        return

    print(f"Found {plan.summary.records} record(s) with pending changes.\n")
    if not args.yes and not confirm("Apply these changes? (y/N) "):
        print("Aborted.")
        return

    result = twin.apply(host=args.host)
    print_outcomes(result.outcomes)
    ok = report(result, f"Applied: {result.applied}, Deleted: {result.deleted}")
    if not ok:
        sys.exit(1)


def cmd_clean(args, twin: "IssueTwin"):
    """Remove every cached record and reset sync cursors."""
    pending = twin.plan()
    if pending.entries and not args.yes:
        print(f"⚠ {pending.summary.records} record(s) have unapplied changes that will be lost.")
        if not confirm("Remove all local records? (y/N) "):
            print("Aborted.")
            return

    removed = twin.clean()
    print(f"✓ Removed {removed} record(s); next pull is a full refresh")
