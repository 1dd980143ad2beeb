"""Tests for the sync engine: incremental queries, isolation and cursors."""

from issuetwin.addressing import identify
from issuetwin.config import SyncPattern
from issuetwin.protocols import RemoteError
from issuetwin.storage.cursors import pattern_key
from issuetwin.sync_engine import build_incremental_query, fetch_enrichment

HOST = "https://jira.example.com"


def _cursor(twin, host_config, pattern=None):
    pattern = pattern or host_config.sync[0]
    return twin.ledger.get(host_config.name, pattern_key(pattern.to_dict()))


class TestBuildIncrementalQuery:
    def test_no_cursor_is_unchanged(self):
        assert build_incremental_query(" project = SRE ", None) == "project = SRE"

    def test_full_refresh_ignores_cursor(self):
        assert build_incremental_query("project = SRE", "2026-01-10T09:00:00Z", full=True) == "project = SRE"

    def test_appends_predicate(self):
        query = build_incremental_query("project = SRE", "2026-01-10T09:15:42.000+0000")
        assert query == '(project = SRE) AND updated >= "2026-01-10 09:15"'

    def test_order_by_stays_last(self):
        query = build_incremental_query(
            "assignee = currentUser()\n  order by updated DESC, key ASC", "2026-01-10T09:15:00Z"
        )
        assert query == (
            '(assignee = currentUser()) AND updated >= "2026-01-10 09:15" order by updated DESC, key ASC'
        )

    def test_order_by_only_filter(self):
        query = build_incremental_query("ORDER BY updated DESC", "2026-01-10T09:15:00Z")
        assert query == 'updated >= "2026-01-10 09:15" ORDER BY updated DESC'

    def test_cursor_is_converted_to_utc(self):
        query = build_incremental_query("project = SRE", "2026-01-10T11:15:00.000+0200")
        assert 'updated >= "2026-01-10 09:15"' in query


class TestFetchEnrichment:
    def test_failures_become_warnings(self, fake_remote):
        fake_remote.add_issue("SRE-1")
        fake_remote.fail["get_comments"] = RemoteError(500, "boom")

        comments, changelog, warnings = fetch_enrichment(fake_remote, "SRE-1")

        assert comments is None
        assert changelog == {"histories": []}
        assert len(warnings) == 1
        assert "comments" in warnings[0]


class TestPull:
    def test_saves_every_match(self, twin, fake_remote, host_config):
        fake_remote.add_issue("SRE-1")
        fake_remote.add_issue("SRE-2")

        result = twin.engine.pull(host_config)

        assert result.success
        assert result.pulled == 2
        assert result.patterns == 1
        assert twin.store.exists(identify(HOST, "SRE-2"))

    def test_first_pull_is_full_then_incremental(self, twin, fake_remote, host_config):
        fake_remote.add_issue("SRE-1", updated="2026-01-10T09:00:00.000+0000")
        twin.engine.pull(host_config)
        twin.engine.pull(host_config)

        queries = [call[1] for call in fake_remote.calls if call[0] == "search_all"]
        assert queries[0] == "project = SRE ORDER BY updated DESC"
        assert queries[1] == '(project = SRE) AND updated >= "2026-01-10 09:00" ORDER BY updated DESC'

    def test_cursor_is_max_remote_updated(self, twin, fake_remote, host_config):
        fake_remote.add_issue("SRE-1", updated="2026-01-10T09:00:00.000+0000")
        fake_remote.add_issue("SRE-2", updated="2026-01-12T15:30:00.000+0000")
        fake_remote.add_issue("SRE-3", updated="2026-01-11T00:00:00.000+0000")

        twin.engine.pull(host_config)
        assert _cursor(twin, host_config) == "2026-01-12T15:30:00.000+0000"

    def test_cursor_is_monotonic_across_pulls(self, twin, fake_remote, host_config):
        fake_remote.add_issue("SRE-1", updated="2026-01-12T00:00:00.000+0000")
        twin.engine.pull(host_config)
        first = _cursor(twin, host_config)

        # A full refresh that only sees older items must not move the cursor back
        fake_remote.issues["SRE-1"]["fields"]["updated"] = "2026-01-01T00:00:00.000+0000"
        twin.engine.pull(host_config, full=True)

        assert _cursor(twin, host_config) == first

    def test_empty_window_falls_back_to_pull_start(self, twin, fake_remote, host_config):
        result = twin.engine.pull(host_config)

        assert result.pulled == 0
        assert _cursor(twin, host_config) is not None

    def test_failed_search_isolated_and_cursor_untouched(self, twin, fake_remote, host_config):
        host_config.sync.append(SyncPattern(project="OPS"))
        fake_remote.add_issue("SRE-1")
        calls = {"n": 0}
        original = fake_remote.search_all

        def flaky_search(query, limit=None):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RemoteError(400, "bad query")
            return original(query, limit)

        fake_remote.search_all = flaky_search
        result = twin.engine.pull(host_config)

        assert not result.success
        assert len(result.failures) == 1
        assert result.pulled == 1
        assert _cursor(twin, host_config) is None
        assert _cursor(twin, host_config, host_config.sync[1]) is not None

    def test_enrichment_failure_is_a_warning(self, twin, fake_remote, host_config):
        fake_remote.add_issue("SRE-1")
        fake_remote.fail["get_changelog"] = RemoteError(None, "timeout")

        result = twin.engine.pull(host_config)

        assert result.success
        assert result.pulled == 1
        assert len(result.warnings) == 1

    def test_failed_item_does_not_stop_others(self, twin, fake_remote, host_config, monkeypatch):
        fake_remote.add_issue("SRE-1")
        fake_remote.add_issue("SRE-2")
        original_save = twin.store.save

        def failing_save(issue, host, **kwargs):
            if issue["key"] == "SRE-1":
                raise OSError("disk full")
            return original_save(issue, host, **kwargs)

        monkeypatch.setattr(twin.store, "save", failing_save)
        result = twin.engine.pull(host_config)

        assert [o.label for o in result.failures] == ["SRE-1"]
        assert result.pulled == 1
        assert twin.store.exists(identify(HOST, "SRE-2"))

    def test_pattern_limit_is_passed(self, twin, fake_remote, host_config):
        host_config.sync = [SyncPattern(project="SRE", limit=1)]
        fake_remote.add_issue("SRE-1")
        fake_remote.add_issue("SRE-2")

        result = twin.engine.pull(host_config)

        assert result.pulled == 1
        assert ("search_all", "project = SRE", 1) in fake_remote.calls

    def test_pattern_without_query_is_skipped(self, twin, fake_remote, host_config):
        host_config.sync = [SyncPattern()]
        result = twin.engine.pull(host_config)

        assert result.success
        assert result.patterns == 0
        assert "search_all" not in fake_remote.call_names()

    def test_pull_preserves_pending(self, twin, fake_remote, host_config, saved_record):
        twin.queue.edit(saved_record, "priority", "High")
        twin.queue.comment(saved_record, "queued")
        before = twin.store.read(saved_record).local.pending

        fake_remote.issues["SRE-1"]["fields"]["summary"] = "Renamed remotely"
        twin.engine.pull(host_config)

        record = twin.store.read(saved_record)
        assert record.local.pending == before
        assert record.title == "Renamed remotely"


class TestPullKeys:
    def test_pull_new_key(self, twin, fake_remote):
        fake_remote.add_issue("SRE-5")

        result = twin.pull_keys(["sre-5"])

        assert result.pulled == 1
        assert twin.store.exists(identify(HOST, "SRE-5"))
        assert twin.ledger.get("work", pattern_key(twin.config.hosts["work"].sync[0].to_dict())) is None

    def test_pull_by_short_id(self, twin, fake_remote, saved_record):
        fake_remote.issues["SRE-1"]["fields"]["summary"] = "Fresh"

        result = twin.pull_keys([saved_record[:8]])

        assert result.success
        assert twin.store.read(saved_record).title == "Fresh"

    def test_missing_key_isolated(self, twin, fake_remote):
        fake_remote.add_issue("SRE-2")

        result = twin.pull_keys(["SRE-404", "SRE-2"])

        assert result.pulled == 1
        assert [o.label for o in result.failures] == ["SRE-404"]

    def test_unknown_id_fails(self, twin):
        result = twin.pull_keys(["deadbeef"])
        assert not result.success
