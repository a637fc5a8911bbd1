"""Jira Product Discovery (Jira Cloud REST v3) client"""

import logging
import re
import time
from typing import Any, Dict, List, Optional

import requests

from jpdsync.errors import NotFoundError, SourceApiError, TransitionNotAvailableError

logger = logging.getLogger(__name__)


class JiraClient:
    """Wrapper for the JPD operations the sync engine needs.

    In dry-run mode reads go to the API as usual while every mutating call is
    logged and skipped; `create_issue` then returns a `DRY-RUN-<n>` key.
    """

    PAGE_SIZE = 50

    def __init__(self, base_url: str, email: str, api_token: str, dry_run: bool = False, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.dry_run = dry_run
        self.timeout = timeout
        self.session = requests.Session()
        self.session.auth = (email, api_token)
        self.session.headers.update({"Accept": "application/json", "Content-Type": "application/json"})
        self._dry_run_counter = 0

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Transient failures: rate limiting, 5xx, dropped connections."""
        if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
            return True
        if isinstance(exc, SourceApiError):
            return exc.status_code in (429, 500, 502, 503, 504)
        return False

    def _with_retries(self, fn, *, max_attempts: int = 3, base_delay_s: float = 0.5):
        """Run callable with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= max_attempts or not self._should_retry(e):
                    raise
                delay = getattr(e, "retry_after", None) or base_delay_s * (2 ** (attempt - 1))
                logger.warning(f"Transient JPD API error (attempt {attempt}/{max_attempts}), retrying in {delay}s: {e}")
                time.sleep(delay)
                attempt += 1

    def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        def call():
            response = self.session.request(method, f"{self.base_url}{endpoint}", timeout=self.timeout, **kwargs)
            if response.ok:
                return response.json() if response.text else {}
            body = response.text[:500] if response.text else ""
            message = f"JPD API Error {response.status_code} on {endpoint}: {body}"
            if response.status_code == 404:
                raise NotFoundError(message, status_code=404, endpoint=endpoint)
            err = SourceApiError(message, status_code=response.status_code, endpoint=endpoint)
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                err.retry_after = min(int(retry_after), 60)
            raise err

        return self._with_retries(call)

    def search_issues(self, jql: str, fields: Optional[List[str]] = None, limit: int = 50) -> Dict[str, Any]:
        """Page through /search/jql (nextPageToken) until `limit` issues are collected."""
        issues: List[Dict[str, Any]] = []
        total = 0
        token: Optional[str] = None
        while True:
            payload: Dict[str, Any] = {
                "jql": jql,
                "maxResults": min(limit - len(issues), self.PAGE_SIZE),
                "fields": fields or ["*all"],
            }
            if token:
                payload["nextPageToken"] = token
            data = self._request("POST", "/rest/api/3/search/jql", json=payload)
            issues.extend(data.get("issues") or [])
            total = data.get("total") or len(issues)
            token = data.get("nextPageToken")
            if not token or len(issues) >= limit:
                break
        logger.debug(f"JQL '{jql}' returned {len(issues)} issues")
        return {"issues": issues[:limit], "total": total}

    def get_issue(self, key: str, fields: Optional[List[str]] = None) -> Dict[str, Any]:
        params = {"fields": ",".join(fields or ["*all"])}
        return self._request("GET", f"/rest/api/3/issue/{key}", params=params)

    def get_transitions(self, key: str) -> List[Dict[str, Any]]:
        data = self._request("GET", f"/rest/api/3/issue/{key}/transitions")
        return data.get("transitions") or []

    def transition_issue(self, key: str, status_name: str) -> None:
        """Move an issue to `status_name` through whichever transition leads there.

        JPD exposes no direct status write, only workflow transitions.
        """
        transitions = self.get_transitions(key)
        match = next((t for t in transitions if (t.get("to") or {}).get("name") == status_name), None)
        if match is None:
            raise TransitionNotAvailableError(
                key, status_name, available=[(t.get("to") or {}).get("name") for t in transitions]
            )
        if self.dry_run:
            logger.info(f'[DRY RUN] Would transition {key} to "{status_name}" (transition {match.get("id")})')
            return
        self._request("POST", f"/rest/api/3/issue/{key}/transitions", json={"transition": {"id": match["id"]}})

    def get_comments(self, key: str) -> List[Dict[str, Any]]:
        data = self._request("GET", f"/rest/api/3/issue/{key}/comment")
        return data.get("comments") or []

    def add_comment(self, key: str, markdown: str) -> Optional[Dict[str, Any]]:
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add comment to {key}")
            return None
        return self._request("POST", f"/rest/api/3/issue/{key}/comment", json={"body": markdown_to_adf(markdown)})

    def create_issue(self, payload: Dict[str, Any]) -> str:
        """Create an issue and return its key."""
        if self.dry_run:
            self._dry_run_counter += 1
            key = f"DRY-RUN-{self._dry_run_counter}"
            summary = (payload.get("fields") or {}).get("summary")
            logger.info(f'[DRY RUN] Would create JPD issue "{summary}" (placeholder {key})')
            return key
        data = self._request("POST", "/rest/api/3/issue", json=payload)
        logger.info(f"Created JPD issue {data.get('key')}")
        return str(data.get("key"))

    def create_link(self, child_key: str, parent_key: str, relation: str = "relates to") -> None:
        if self.dry_run:
            logger.info(f"[DRY RUN] Would link {child_key} -> {parent_key} ({relation})")
            return
        self._request(
            "POST",
            "/rest/api/3/issueLink",
            json={
                "type": {"name": relation},
                "inwardIssue": {"key": child_key},
                "outwardIssue": {"key": parent_key},
            },
        )


def markdown_to_adf(markdown: str) -> Dict[str, Any]:
    """Minimal markdown -> ADF: one plain paragraph per blank-line separated block."""
    paragraphs = [p for p in (markdown or "").split("\n\n") if p.strip()]
    return {
        "type": "doc",
        "version": 1,
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": re.sub(r"\*\*(.+?)\*\*", r"\1", p)}]}
            for p in paragraphs
        ],
    }
