"""Online search: run a query and print the matches without storing them."""

import logging
import sys
from typing import TYPE_CHECKING, Any, Dict

import yaml

from issuetwin.cli.commands.helpers import print_json, validate_input

if TYPE_CHECKING:
    from issuetwin import IssueTwin

logger = logging.getLogger(__name__)

SUMMARY_WIDTH = 30


def _row(issue: Dict[str, Any]) -> Dict[str, Any]:
    fields = issue.get("fields") or {}
    return {
        "key": issue.get("key"),
        "summary": fields.get("summary"),
        "status": (fields.get("status") or {}).get("name"),
        "assignee": (fields.get("assignee") or {}).get("displayName"),
        "priority": (fields.get("priority") or {}).get("name"),
        "updated": fields.get("updated"),
    }


def cmd_search(args, twin: "IssueTwin"):
    """Search the remote host; output as table, yaml or json."""
    query = validate_input(" ".join(args.query), "query")
    host = twin.config.get_host(args.host)
    print(f"Searching {host.name}: {query}\n", file=sys.stderr)

    issues = twin.search(query, host=host.name, limit=args.limit)
    if not issues:
        print("No results found.")
        return

    if args.format == "json":
        print_json(issues)
    elif args.format == "yaml":
        rows = [_row(issue) for issue in issues]
        print(yaml.safe_dump(rows, sort_keys=False, allow_unicode=True).rstrip())
    else:
        print(f"{'KEY':<12}  {'STATUS':<14}  {'ASSIGNEE':<22}  SUMMARY")
        print("─" * 80)
        for issue in issues:
            row = _row(issue)
            print(
                f"{row['key'] or '':<12}  {row['status'] or '':<14}  "
                f"{row['assignee'] or 'Unassigned':<22}  {(row['summary'] or '')[:SUMMARY_WIDTH]}"
            )

    print(f"\nShowing {len(issues)} result(s)", file=sys.stderr)
