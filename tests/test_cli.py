"""Tests for the issuetwin CLI commands and main() dispatch."""

import argparse
import json
from unittest.mock import patch

import pytest
import yaml

from issuetwin.cli.__main__ import build_parser, main
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
from issuetwin.protocols import RemoteError
from issuetwin.storage.cursors import pattern_key
from issuetwin.storage.records import RecordStore
from issuetwin.utils import get_storage_dir

HOST = "https://jira.example.com"

# ============================================================================
# Helpers
# ============================================================================


def _args(**kwargs):
    """Build an argparse.Namespace with defaults shared by the commands."""
    defaults = {
        "host": None,
        "json": False,
        "yes": True,
        "full": False,
        "keys": [],
        "all": False,
        "clear": False,
        "remove": False,
        "project": None,
        "status": None,
        "tag": None,
        "limit": 20,
        "type": "Relates",
        "raw": False,
        "format": "table",
    }
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


# ============================================================================
# Sync commands
# ============================================================================


class TestPullCommand:
    def test_pull_reports_count(self, twin, fake_remote, capsys):
        fake_remote.add_issue("SRE-1")

        cmd_pull(_args(), twin)

        assert "✓ Pulled 1 record(s)" in capsys.readouterr().out

    def test_failure_exits_non_zero(self, twin, fake_remote, capsys):
        fake_remote.fail["search_all"] = RemoteError(500, "down")

        with pytest.raises(SystemExit) as exc_info:
            cmd_pull(_args(), twin)

        assert exc_info.value.code == 1
        out = capsys.readouterr().out
        assert "✗" in out
        assert "down" in out

    def test_enrichment_warning_still_succeeds(self, twin, fake_remote, capsys):
        fake_remote.add_issue("SRE-1")
        fake_remote.fail["get_comments"] = RemoteError(500, "nope")

        cmd_pull(_args(), twin)

        out = capsys.readouterr().out
        assert "⚠ Could not fetch comments for SRE-1" in out
        assert "1 warning(s)" in out

    def test_pull_specific_keys(self, twin, fake_remote, capsys):
        fake_remote.add_issue("SRE-9")

        cmd_pull(_args(keys=["SRE-9"]), twin)

        assert "Pulled 1 record(s)" in capsys.readouterr().out
        assert "search_all" not in fake_remote.call_names()


class TestPlanAndApplyCommands:
    def test_plan_empty(self, twin, saved_record, capsys):
        cmd_plan(_args(), twin)
        assert "No pending changes." in capsys.readouterr().out

    def test_plan_json(self, twin, saved_record, capsys):
        twin.queue.edit(saved_record, "priority", "High")

        cmd_plan(_args(json=True), twin)

        data = json.loads(capsys.readouterr().out)
        assert data["summary"]["field_updates"] == 1
        assert data["entries"][0]["fields"][0] == {"field": "priority", "before": "Major", "after": "High"}

    def test_apply_declined(self, twin, fake_remote, saved_record, capsys):
        twin.queue.comment(saved_record, "hi")

        with patch("builtins.input", return_value="n"):
            cmd_apply(_args(yes=False), twin)

        assert "Aborted." in capsys.readouterr().out
        assert "add_comment" not in fake_remote.call_names()

    def test_apply_failure_exits_non_zero(self, twin, fake_remote, saved_record, capsys):
        twin.queue.edit(saved_record, "status", "Nowhere")

        with pytest.raises(SystemExit) as exc_info:
            cmd_apply(_args(), twin)

        assert exc_info.value.code == 1
        assert "✗ SRE-1" in capsys.readouterr().out

    def test_apply_success(self, twin, fake_remote, saved_record, capsys):
        twin.queue.comment(saved_record, "hi")

        cmd_apply(_args(), twin)

        assert "✓ Applied: 1, Deleted: 0" in capsys.readouterr().out

    def test_clean(self, twin, fake_remote, saved_record, capsys):
        fake_remote.add_issue("SRE-2")
        twin.pull()

        cmd_clean(_args(), twin)

        assert twin.store.list_ids() == []
        assert twin.ledger.get("work", pattern_key(twin.config.hosts["work"].sync[0].to_dict())) is None
        assert "Removed 2 record(s)" in capsys.readouterr().out


# ============================================================================
# Offline mutation commands
# ============================================================================


class TestMutationCommands:
    def test_edit(self, twin, saved_record, capsys):
        cmd_edit(_args(id="SRE-1", field="labels", value=["+urgent"]), twin)

        assert twin.store.read(saved_record).local.pending.fields["labels"] == ["backend", "urgent"]
        assert "✓ Queued edit: SRE-1" in capsys.readouterr().out

    def test_edit_joins_value_words(self, twin, saved_record):
        cmd_edit(_args(id=saved_record[:8], field="status", value=["In", "Progress"]), twin)
        assert twin.store.read(saved_record).local.pending.transition == "In Progress"

    def test_edit_parser_accepts_label_removal(self):
        args = build_parser().parse_args(["edit", "SRE-1", "labels", "-urgent"])
        assert args.value == ["-urgent"]

    def test_edit_requires_value(self, twin, saved_record):
        with pytest.raises(ValueError):
            cmd_edit(_args(id="SRE-1", field="status", value=[]), twin)

    def test_comment(self, twin, saved_record, capsys):
        cmd_comment(_args(id="SRE-1", text=["looks", "good"]), twin)

        assert twin.store.read(saved_record).local.pending.comments[0].text == "looks good"
        assert '"looks good"' in capsys.readouterr().out

    def test_link(self, twin, store, saved_record, issue_factory, capsys):
        store.save(issue_factory("SRE-2"), HOST, comments=[])

        cmd_link(_args(id1="SRE-1", id2="SRE-2", type="Blocks"), twin)

        assert "SRE-1 → Blocks → SRE-2" in capsys.readouterr().out

    def test_delete_twice_reports_already_marked(self, twin, saved_record, capsys):
        cmd_delete(_args(ids=["SRE-1"]), twin)
        cmd_delete(_args(ids=["SRE-1"]), twin)

        out = capsys.readouterr().out
        assert "✓ Marked for deletion: SRE-1" in out
        assert "⚠ SRE-1: Already marked for deletion" in out

    def test_delete_clear(self, twin, saved_record, capsys):
        cmd_delete(_args(ids=["SRE-1"], clear=True), twin)
        assert "Not marked for deletion" in capsys.readouterr().out

    def test_tag(self, twin, saved_record, capsys):
        cmd_tag(_args(id="SRE-1", tags=["later"]), twin)
        assert "✓ Tags on SRE-1: later" in capsys.readouterr().out


# ============================================================================
# Read-side commands
# ============================================================================


class TestListAndMark:
    def test_list_shows_unread(self, twin, saved_record, capsys):
        cmd_list(_args(), twin)

        out = capsys.readouterr().out
        assert "1 unread records" in out
        assert "SRE-1" in out

    def test_list_hides_read_unless_all(self, twin, saved_record, capsys):
        cmd_mark(_args(ids=["SRE-1"]), twin)
        cmd_list(_args(), twin)
        assert "No records to show." in capsys.readouterr().out

        cmd_list(_args(all=True), twin)
        assert "1 records in cache" in capsys.readouterr().out

    def test_mark_all(self, twin, saved_record, capsys):
        cmd_mark(_args(ids=[], all=True), twin)
        assert "✓ Marked 1 record(s) as read." in capsys.readouterr().out

    def test_mark_unknown_id(self, twin, saved_record, capsys):
        cmd_mark(_args(ids=["SRE-404"]), twin)
        assert "✗ SRE-404" in capsys.readouterr().out


class TestViewCommand:
    def test_never_read_shows_full_record(self, twin, saved_record, capsys):
        cmd_view(_args(id="SRE-1"), twin)

        out = capsys.readouterr().out
        assert "★ NEW (never read)" in out
        assert "# SRE-1: Summary of SRE-1" in out

    def test_unchanged_since_read(self, twin, saved_record, capsys):
        twin.store.mark_read(saved_record)

        cmd_view(_args(id="SRE-1"), twin)

        assert "✓ No changes since last read" in capsys.readouterr().out

    def test_changes_since_read(self, twin, fake_remote, saved_record, capsys):
        twin.store.mark_read(saved_record)
        fake_remote.issues["SRE-1"]["fields"]["status"] = {"name": "In Progress", "id": "3"}
        fake_remote.issues["SRE-1"]["fields"]["updated"] = "2099-01-01T00:00:00.000+0000"
        twin.pull_keys(["SRE-1"])

        cmd_view(_args(id="SRE-1"), twin)

        out = capsys.readouterr().out
        assert "Changes since" in out
        assert "  Status:\n    - Open\n    + In Progress" in out
        assert "Link: https://jira.example.com/browse/SRE-1" in out

    def test_full_shows_pending(self, twin, saved_record, capsys):
        twin.store.mark_read(saved_record)
        twin.queue.comment(saved_record, "queued")

        cmd_view(_args(id="SRE-1", full=True), twin)

        out = capsys.readouterr().out
        assert "# SRE-1: Summary of SRE-1" in out
        assert "## Pending Changes (not yet applied)" in out
        assert "queued" in out

    def test_raw_prints_frontmatter(self, twin, saved_record, capsys):
        cmd_view(_args(id="SRE-1", raw=True), twin)

        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[0] == "---"
        assert lines[-1] == "---"
        assert yaml.safe_load("\n".join(lines[1:-1]))["key"] == "SRE-1"


class TestSearchCommand:
    def test_table(self, twin, fake_remote, capsys):
        fake_remote.add_issue("SRE-1", assignee="jdoe")
        fake_remote.add_issue("SRE-2")

        cmd_search(_args(query=["project", "=", "SRE"], limit=50), twin)

        captured = capsys.readouterr()
        assert "SRE-1" in captured.out
        assert "jdoe" in captured.out
        assert "Unassigned" in captured.out
        assert "Showing 2 result(s)" in captured.err
        assert ("search_all", "project = SRE", 50) in fake_remote.calls

    def test_nothing_is_stored(self, twin, fake_remote, capsys):
        fake_remote.add_issue("SRE-1")

        cmd_search(_args(query=["project = SRE"], limit=50), twin)

        assert list(twin.store.iter_records()) == []

    def test_json(self, twin, fake_remote, capsys):
        fake_remote.add_issue("SRE-1")

        cmd_search(_args(query=["project = SRE"], limit=50, format="json"), twin)

        assert [i["key"] for i in json.loads(capsys.readouterr().out)] == ["SRE-1"]

    def test_yaml(self, twin, fake_remote, capsys):
        fake_remote.add_issue("SRE-1", status="Done")

        cmd_search(_args(query=["project = SRE"], limit=50, format="yaml"), twin)

        rows = yaml.safe_load(capsys.readouterr().out)
        assert rows[0]["key"] == "SRE-1"
        assert rows[0]["status"] == "Done"

    def test_no_results(self, twin, fake_remote, capsys):
        cmd_search(_args(query=["project = NONE"], limit=5), twin)
        assert "No results found." in capsys.readouterr().out


class TestFieldCommand:
    def test_sync_then_search(self, twin, fake_remote, capsys):
        fake_remote.fields = [
            {"id": "customfield_100", "name": "Story Points", "custom": True, "clauseNames": ["sp"]},
            {"id": "duedate", "name": "Due Date", "custom": False},
        ]

        cmd_field(_args(field_action="sync"), twin)
        cmd_field(_args(field_action="search", query="story"), twin)

        out = capsys.readouterr().out
        assert "Found 2 fields (1 custom)" in out
        assert "customfield_100" in out
        assert "Name: Story Points" in out


# ============================================================================
# main()
# ============================================================================


class TestMain:
    def test_unknown_record_exits_1(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--home", str(tmp_path), "edit", "SRE-1", "priority", "High"])

        assert exc_info.value.code == 1
        assert "✗" in capsys.readouterr().err

    def test_local_commands_need_no_config(self, tmp_path, issue_factory, capsys):
        store = RecordStore(get_storage_dir(tmp_path))
        record_id = store.save(issue_factory("SRE-1"), HOST, comments=[])

        main(["--home", str(tmp_path), "comment", "SRE-1", "hello", "there"])
        main(["--home", str(tmp_path), "plan"])

        assert store.read(record_id).local.pending.comments[0].text == "hello there"
        assert '+ comment: "hello there"' in capsys.readouterr().out

    def test_edit_removes_label_from_command_line(self, tmp_path, issue_factory):
        store = RecordStore(get_storage_dir(tmp_path))
        record_id = store.save(issue_factory("SRE-1", labels=["backend", "urgent"]), HOST, comments=[])

        main(["--home", str(tmp_path), "edit", "SRE-1", "labels", "-urgent"])

        assert store.read(record_id).local.pending.fields["labels"] == ["backend"]

    def test_invalid_input_exits_1(self, tmp_path, issue_factory, capsys):
        RecordStore(get_storage_dir(tmp_path)).save(issue_factory("SRE-1"), HOST, comments=[])

        with pytest.raises(SystemExit) as exc_info:
            main(["--home", str(tmp_path), "comment", "SRE-1", " "])

        assert exc_info.value.code == 1
        assert "Invalid input" in capsys.readouterr().err
