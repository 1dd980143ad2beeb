"""Remote issue-tracker client.

Thin synchronous wrapper over the tracker's REST API (v2 paths) using
httpx with bearer-token auth. Non-success responses raise RemoteError
carrying the status and response text; 204 responses return None.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from issuetwin.protocols import RemoteError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_TIMEOUT = 30.0


class JiraClient:
    """REST client for one tracker host.

    Args:
        base_url: Host base URL (e.g. ``https://jira.example.com``)
        token: Personal access token sent as a bearer token
        api_path: API prefix appended to the base URL
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        api_path: str = "/rest/api/2",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self._client = httpx.Client(
            base_url=f"{self.base_url}{api_path}",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "JiraClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(
        self,
        method: str,
        endpoint: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        logger.debug(f"{method} {endpoint}")
        try:
            response = self._client.request(method, endpoint, json=json_body, params=params)
        except httpx.HTTPError as e:
            raise RemoteError(None, str(e)) from e

        if response.status_code == 204:
            return None
        if not response.is_success:
            raise RemoteError(response.status_code, response.text)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(response.status_code, f"Invalid JSON response: {e}") from e

    # === Reads ===

    def get_issue(self, key: str, fields: Optional[List[str]] = None) -> Dict[str, Any]:
        params = {"fields": ",".join(fields)} if fields else None
        return self._request("GET", f"/issue/{key}", params=params)

    def search(
        self,
        query: str,
        start_at: int = 0,
        max_results: int = DEFAULT_PAGE_SIZE,
        fields: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Fetch one page of search results."""
        body: Dict[str, Any] = {"jql": query, "startAt": start_at, "maxResults": max_results}
        if fields:
            body["fields"] = fields
        return self._request("POST", "/search", json_body=body) or {}

    def search_all(self, query: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Fetch every match, page by page, never more than ``limit``."""
        issues: List[Dict[str, Any]] = []
        start_at = 0
        while True:
            page_size = self.page_size
            if limit is not None:
                page_size = min(page_size, limit - len(issues))
                if page_size <= 0:
                    break

            page = self.search(query, start_at=start_at, max_results=page_size)
            batch = page.get("issues") or []
            issues.extend(batch)

            if limit is not None and len(issues) >= limit:
                break
            total = page.get("total")
            if not batch or (total is not None and start_at + len(batch) >= total):
                break
            start_at += len(batch)

        return issues[:limit] if limit is not None else issues

    def get_comments(self, key: str) -> List[Dict[str, Any]]:
        result = self._request("GET", f"/issue/{key}/comment") or {}
        return result.get("comments") or []

    def get_changelog(self, key: str) -> Dict[str, Any]:
        # Data Center exposes the changelog through the expand parameter
        result = self._request("GET", f"/issue/{key}", params={"expand": "changelog"}) or {}
        return result.get("changelog") or {"histories": []}

    def get_transitions(self, key: str) -> List[Dict[str, Any]]:
        result = self._request("GET", f"/issue/{key}/transitions") or {}
        return result.get("transitions") or []

    def get_issue_links(self, key: str) -> List[Dict[str, Any]]:
        issue = self.get_issue(key, fields=["issuelinks"])
        return (issue.get("fields") or {}).get("issuelinks") or []

    def get_fields(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/field") or []

    def myself(self) -> Dict[str, Any]:
        return self._request("GET", "/myself")

    # === Writes ===

    def update_fields(self, key: str, fields: Dict[str, Any]) -> None:
        self._request("PUT", f"/issue/{key}", json_body={"fields": fields})

    def do_transition(self, key: str, transition_id: str) -> None:
        self._request(
            "POST", f"/issue/{key}/transitions", json_body={"transition": {"id": transition_id}}
        )

    def add_comment(self, key: str, body: str) -> Dict[str, Any]:
        return self._request("POST", f"/issue/{key}/comment", json_body={"body": body})

    def create_link(self, link_type: str, inward_key: str, outward_key: str) -> None:
        self._request(
            "POST",
            "/issueLink",
            json_body={
                "type": {"name": link_type},
                "inwardIssue": {"key": inward_key},
                "outwardIssue": {"key": outward_key},
            },
        )

    def delete_link(self, link_id: str) -> None:
        self._request("DELETE", f"/issueLink/{link_id}")

    def delete_issue(self, key: str) -> None:
        self._request("DELETE", f"/issue/{key}")
