"""
Pytest fixtures and test configuration for issuetwin tests.
"""

import copy
import re
from typing import Any, Dict, List, Optional

import pytest

from issuetwin.config import Config, HostConfig, SyncPattern
from issuetwin.core import IssueTwin
from issuetwin.protocols import RemoteError
from issuetwin.types import parse_datetime, utc_now

HOST_URL = "https://jira.example.com"

TRANSITIONS = [
    {"id": "11", "name": "Start Progress", "to": {"name": "In Progress"}},
    {"id": "21", "name": "Resolve", "to": {"name": "Done"}},
    {"id": "31", "name": "Reopen", "to": {"name": "Open"}},
]


def make_issue(
    key: str,
    summary: Optional[str] = None,
    status: str = "Open",
    updated: str = "2026-01-10T09:00:00.000+0000",
    labels: Optional[List[str]] = None,
    assignee: Optional[str] = None,
    priority: str = "Major",
    description: str = "",
) -> Dict[str, Any]:
    """Remote payload shaped like the tracker's issue JSON."""
    project = key.split("-")[0]
    return {
        "id": str(10000 + int(key.split("-")[1])),
        "key": key,
        "fields": {
            "summary": summary or f"Summary of {key}",
            "status": {"name": status, "id": "1"},
            "priority": {"name": priority, "id": "3"},
            "issuetype": {"name": "Task", "id": "10002"},
            "assignee": {"name": assignee, "displayName": assignee} if assignee else None,
            "reporter": {"name": "reporter", "displayName": "Rita Reporter"},
            "project": {"key": project, "name": f"{project} project"},
            "created": "2026-01-01T09:00:00.000+0000",
            "updated": updated,
            "labels": list(labels or []),
            "components": [],
            "description": description,
            "attachment": [],
            "issuelinks": [],
        },
    }


class FakeRemote:
    """In-memory RemoteService.

    Every call is recorded in ``calls``; ``fail[method] = exc`` makes that
    method raise. ``search_all`` honors an ``updated >= "..."`` predicate
    so incremental pulls behave like the real service.
    """

    UPDATED_RE = re.compile(r'updated >= "([^"]+)"')

    def __init__(self, base_url: str = HOST_URL):
        self.base_url = base_url
        self.issues: Dict[str, Dict[str, Any]] = {}
        self.comments: Dict[str, List[Dict[str, Any]]] = {}
        self.histories: Dict[str, List[Dict[str, Any]]] = {}
        self.transitions: List[Dict[str, Any]] = copy.deepcopy(TRANSITIONS)
        self.links: List[Dict[str, Any]] = []
        self.fields: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self._next_id = 1

    # === Test helpers ===

    def add_issue(self, key: str, **kwargs) -> Dict[str, Any]:
        issue = make_issue(key, **kwargs)
        self.issues[key] = issue
        return issue

    def add_history(self, key: str, created: str, field: str, from_string=None, to_string=None):
        self.histories.setdefault(key, []).append(
            {
                "id": str(self._new_id()),
                "created": created,
                "items": [{"field": field, "fromString": from_string, "toString": to_string}],
            }
        )

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _record(self, name: str, *args):
        self.calls.append((name,) + args)
        if name in self.fail:
            raise self.fail[name]

    def _issue(self, key: str) -> Dict[str, Any]:
        if key not in self.issues:
            raise RemoteError(404, f'{{"errorMessages":["Issue {key} does not exist"]}}')
        return self.issues[key]

    def _touch(self, key: str):
        self.issues[key]["fields"]["updated"] = utc_now()

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    # === RemoteService ===

    def get_issue(self, key: str) -> Dict[str, Any]:
        self._record("get_issue", key)
        issue = copy.deepcopy(self._issue(key))
        issue["fields"]["issuelinks"] = self._links_for(key)
        return issue

    def search_all(self, query: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        self._record("search_all", query, limit)
        issues = sorted(self.issues.values(), key=lambda i: i["key"])
        match = self.UPDATED_RE.search(query)
        if match:
            since = parse_datetime(match.group(1))
            issues = [i for i in issues if parse_datetime(i["fields"]["updated"]) >= since]
        if limit is not None:
            issues = issues[:limit]
        return copy.deepcopy(issues)

    def get_comments(self, key: str) -> List[Dict[str, Any]]:
        self._record("get_comments", key)
        return copy.deepcopy(self.comments.get(key, []))

    def get_changelog(self, key: str) -> Dict[str, Any]:
        self._record("get_changelog", key)
        return {"histories": copy.deepcopy(self.histories.get(key, []))}

    def update_fields(self, key: str, fields: Dict[str, Any]) -> None:
        self._record("update_fields", key, fields)
        issue = self._issue(key)
        for field_id, value in fields.items():
            if isinstance(value, dict) and "name" in value:
                value = {"name": value["name"], "displayName": value["name"]}
            issue["fields"][field_id] = value
        self._touch(key)

    def get_transitions(self, key: str) -> List[Dict[str, Any]]:
        self._record("get_transitions", key)
        self._issue(key)
        return copy.deepcopy(self.transitions)

    def do_transition(self, key: str, transition_id: str) -> None:
        self._record("do_transition", key, transition_id)
        transition = next(t for t in self.transitions if t["id"] == transition_id)
        self._issue(key)["fields"]["status"] = {"name": transition["to"]["name"], "id": "2"}
        self._touch(key)

    def add_comment(self, key: str, body: str) -> Dict[str, Any]:
        self._record("add_comment", key, body)
        self._issue(key)
        comment = {
            "id": str(self._new_id()),
            "body": body,
            "author": {"displayName": "Test User"},
            "created": utc_now(),
        }
        self.comments.setdefault(key, []).append(comment)
        self._touch(key)
        return comment

    def create_link(self, link_type: str, inward_key: str, outward_key: str) -> None:
        self._record("create_link", link_type, inward_key, outward_key)
        self.links.append(
            {
                "id": str(self._new_id()),
                "type": link_type,
                "inward": inward_key,
                "outward": outward_key,
            }
        )

    def _links_for(self, key: str) -> List[Dict[str, Any]]:
        result = []
        for link in self.links:
            if link["inward"] == key:
                result.append(
                    {"id": link["id"], "type": {"name": link["type"]}, "outwardIssue": {"key": link["outward"]}}
                )
            elif link["outward"] == key:
                result.append(
                    {"id": link["id"], "type": {"name": link["type"]}, "inwardIssue": {"key": link["inward"]}}
                )
        return result

    def get_issue_links(self, key: str) -> List[Dict[str, Any]]:
        self._record("get_issue_links", key)
        return self._links_for(key)

    def delete_link(self, link_id: str) -> None:
        self._record("delete_link", link_id)
        self.links = [link for link in self.links if link["id"] != link_id]

    def delete_issue(self, key: str) -> None:
        self._record("delete_issue", key)
        self._issue(key)
        del self.issues[key]

    def get_fields(self) -> List[Dict[str, Any]]:
        self._record("get_fields")
        return copy.deepcopy(self.fields)


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def host_config():
    return HostConfig(
        name="work",
        url=HOST_URL,
        token="test-token",
        sync=[SyncPattern(jql="project = SRE ORDER BY updated DESC")],
        field_map={"services": "customfield_12345"},
    )


@pytest.fixture
def config(tmp_path, host_config):
    return Config(home=tmp_path, hosts={"work": host_config}, default_host="work")


@pytest.fixture
def twin(tmp_path, config, fake_remote):
    """IssueTwin wired to the in-memory remote."""
    instance = IssueTwin(home=tmp_path, config=config, client_factory=lambda host: fake_remote)
    yield instance
    instance.close()


@pytest.fixture
def store(twin):
    return twin.store


@pytest.fixture
def saved_record(store, fake_remote):
    """Store one record for SRE-1 (also present remotely) and return its id."""
    issue = fake_remote.add_issue("SRE-1", labels=["backend"])
    return store.save(issue, HOST_URL, comments=[])


@pytest.fixture
def issue_factory():
    """The ``make_issue`` payload builder."""
    return make_issue
