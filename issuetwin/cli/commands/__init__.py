"""CLI command modules for issuetwin.

Each module contains related command handlers dispatched from __main__.py.
"""

from issuetwin.cli.commands.edit import cmd_comment, cmd_delete, cmd_edit, cmd_link, cmd_tag
from issuetwin.cli.commands.field import cmd_field
from issuetwin.cli.commands.search import cmd_search
from issuetwin.cli.commands.sync import cmd_apply, cmd_clean, cmd_plan, cmd_pull
from issuetwin.cli.commands.view import cmd_list, cmd_mark, cmd_view

__all__ = [
    "cmd_apply",
    "cmd_clean",
    "cmd_comment",
    "cmd_delete",
    "cmd_edit",
    "cmd_field",
    "cmd_link",
    "cmd_list",
    "cmd_mark",
    "cmd_plan",
    "cmd_pull",
    "cmd_search",
    "cmd_tag",
    "cmd_view",
]
