"""
issuetwin CLI - Local-first twin of a remote issue tracker.

Usage:
    issuetwin pull [KEY...] [--host H] [--full]
    issuetwin plan [--host H] [--json]
    issuetwin apply [--host H] [--yes]
    issuetwin edit ID FIELD VALUE...
    issuetwin comment ID TEXT...
    issuetwin link ID1 ID2 [--type T] [--remove]
    issuetwin delete ID... [--clear]
    issuetwin mark [ID...] [--all] [--clear]
    issuetwin tag ID TAG... [--remove]
    issuetwin list [--all] [--host H]
    issuetwin view ID [--full] [--raw]
    issuetwin search QUERY... [--host H] [--limit N] [--format table|yaml|json]
    issuetwin clean [--yes]
    issuetwin field sync|list|search [--host H]
"""

import argparse
import logging
import sys

from issuetwin import IssueTwin
from issuetwin.cli.commands import (
    cmd_apply,
    cmd_clean,
    cmd_comment,
    cmd_delete,
    cmd_edit,
    cmd_field,
    cmd_link,
    cmd_list,
    cmd_mark,
    cmd_plan,
    cmd_pull,
    cmd_search,
    cmd_tag,
    cmd_view,
)
from issuetwin.protocols import ConfigError, IssueTwinError

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

COMMANDS = {
    "pull": cmd_pull,
    "plan": cmd_plan,
    "apply": cmd_apply,
    "edit": cmd_edit,
    "comment": cmd_comment,
    "link": cmd_link,
    "delete": cmd_delete,
    "mark": cmd_mark,
    "tag": cmd_tag,
    "list": cmd_list,
    "view": cmd_view,
    "search": cmd_search,
    "clean": cmd_clean,
    "field": cmd_field,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="issuetwin",
        description="Local-first twin of a remote issue tracker",
    )
    parser.add_argument("--home", help="issuetwin home directory (default: ~/.issuetwin)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # pull
    p_pull = subparsers.add_parser("pull", help="Fetch records from the remote host")
    p_pull.add_argument("keys", nargs="*", help="Specific keys or ids to pull")
    p_pull.add_argument("--host", "-H", help="Host name from config.yaml")
    p_pull.add_argument("--full", "-f", action="store_true", help="Ignore cursors, refetch all")

    # plan
    p_plan = subparsers.add_parser("plan", help="Preview pending changes")
    p_plan.add_argument("--host", "-H", help="Only records on this host")
    p_plan.add_argument("--json", "-j", action="store_true")

    # apply
    p_apply = subparsers.add_parser("apply", help="Push pending changes")
    p_apply.add_argument("--host", "-H", help="Only records on this host")
    p_apply.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    # edit
    p_edit = subparsers.add_parser("edit", help="Queue a field edit")
    p_edit.add_argument("id", help="Record id, short id or key")
    p_edit.add_argument("field", help="Field name or alias (status, assignee, labels, ...)")
    p_edit.add_argument(
        "value", nargs=argparse.REMAINDER, help="New value; labels take +x, -x or a,b"
    )

    # comment
    p_comment = subparsers.add_parser("comment", help="Queue a comment")
    p_comment.add_argument("id", help="Record id, short id or key")
    p_comment.add_argument("text", nargs=argparse.REMAINDER, help="Comment text")

    # link
    p_link = subparsers.add_parser("link", help="Queue a link between two records")
    p_link.add_argument("id1", help="Source record")
    p_link.add_argument("id2", help="Target record")
    p_link.add_argument("--type", "-t", default="Relates", help="Link type (default: Relates)")
    p_link.add_argument("--remove", "-r", action="store_true", help="Queue link removal")

    # delete
    p_delete = subparsers.add_parser("delete", help="Mark records for remote deletion")
    p_delete.add_argument("ids", nargs="+", help="Records to delete")
    p_delete.add_argument("--clear", "-c", action="store_true", help="Remove deletion marker")

    # mark
    p_mark = subparsers.add_parser("mark", help="Mark records as read")
    p_mark.add_argument("ids", nargs="*", help="Records to mark")
    p_mark.add_argument("--all", "-a", action="store_true", help="Mark every unread record")
    p_mark.add_argument("--clear", "-c", action="store_true", help="Revert to never read")

    # tag
    p_tag = subparsers.add_parser("tag", help="Add local-only tags")
    p_tag.add_argument("id", help="Record id, short id or key")
    p_tag.add_argument("tags", nargs="+", help="Tags")
    p_tag.add_argument("--remove", "-r", action="store_true", help="Remove the tags instead")

    # list
    p_list = subparsers.add_parser("list", help="List unread or changed records")
    p_list.add_argument("--all", "-a", action="store_true", help="Include records already read")
    p_list.add_argument("--host", "-H", help="Only records on this host")
    p_list.add_argument("--project", "-p", help="Only keys in this project")
    p_list.add_argument("--status", "-s", help="Status substring filter")
    p_list.add_argument("--tag", help="Only records with this local tag")
    p_list.add_argument("--limit", "-l", type=int, default=20, help="Max rows (default: 20)")

    # view
    p_view = subparsers.add_parser("view", help="Show a record (changes since last read)")
    p_view.add_argument("id", help="Record id, short id or key")
    p_view.add_argument("--full", "-f", action="store_true", help="Show the full record")
    p_view.add_argument("--raw", action="store_true", help="Show raw YAML frontmatter")

    # search
    p_search = subparsers.add_parser("search", help="Search the remote host (nothing is stored)")
    p_search.add_argument("query", nargs="+", help="Query, passed through unchanged")
    p_search.add_argument("--host", "-H", help="Host name from config.yaml")
    p_search.add_argument("--limit", "-l", type=int, default=50, help="Max results (default: 50)")
    p_search.add_argument(
        "--format", choices=["table", "yaml", "json"], default="table", help="Output format"
    )

    # clean
    p_clean = subparsers.add_parser("clean", help="Remove all local records and cursors")
    p_clean.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    # field
    p_field = subparsers.add_parser("field", help="Remote field catalogue")
    field_sub = p_field.add_subparsers(dest="field_action", required=True)
    f_sync = field_sub.add_parser("sync", help="Fetch and cache field definitions")
    f_sync.add_argument("--host", "-H", help="Host name from config.yaml")
    f_list = field_sub.add_parser("list", help="List cached custom fields")
    f_list.add_argument("--host", "-H", help="Host name from config.yaml")
    f_search = field_sub.add_parser("search", help="Search cached fields by id or name")
    f_search.add_argument("query", help="Text to search for")
    f_search.add_argument("--host", "-H", help="Host name from config.yaml")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        twin = IssueTwin(home=args.home)
    except ConfigError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    try:
        COMMANDS[args.command](args, twin)
    except IssueTwinError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"✗ Invalid input: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        twin.close()


if __name__ == "__main__":
    main()
