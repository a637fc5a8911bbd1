"""GitLab API client wrapper"""
import gitlab
import logging
from typing import List, Dict, Any, Optional, Iterable
import time

from jpdsync.models.issues import SyncMetadata, TargetIssue
from jpdsync.services.metadata import inject_metadata, parse_metadata

logger = logging.getLogger(__name__)

DEFAULT_LABEL_COLOR = "#6699cc"


class GitLabClient:
    """Wrapper for GitLab API operations on the mirror project"""

    def __init__(self, url: str, access_token: str, project_id: str, dry_run: bool = False):
        """Initialize GitLab client"""
        self.url = url
        self.project_id = project_id
        self.dry_run = dry_run
        self.gl = gitlab.Gitlab(url, private_token=access_token)
        self.gl.auth()
        self._project = None
        self._known_labels: Optional[set] = None
        self._dry_run_counter = 0

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Best-effort retry predicate for transient GitLab failures."""
        rc = getattr(exc, "response_code", None)
        if rc in (429, 500, 502, 503, 504):
            return True
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
                time.sleep(base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    @staticmethod
    def _normalize_issue_payload(issue_data: Dict[str, Any], *, for_update: bool) -> Dict[str, Any]:
        """Normalize payload fields for GitLab API quirks."""
        data = dict(issue_data)

        # GitLab expects a comma-separated string for `labels`; an empty string clears them on update.
        if "labels" in data:
            labels = data.get("labels")
            if not labels:
                if for_update:
                    data["labels"] = ""
                else:
                    data.pop("labels", None)
            elif isinstance(labels, list):
                data["labels"] = ",".join(labels)

        return data

    @staticmethod
    def to_target_issue(issue: Any) -> TargetIssue:
        """python-gitlab issue -> TargetIssue (state normalized to open/closed)"""
        body = getattr(issue, "description", None) or ""
        return TargetIssue(
            number=int(issue.iid),
            title=getattr(issue, "title", "") or "",
            body=body,
            labels=list(getattr(issue, "labels", None) or []),
            state="closed" if getattr(issue, "state", "opened") == "closed" else "open",
            metadata=parse_metadata(body),
            updated_at=getattr(issue, "updated_at", None),
            web_url=getattr(issue, "web_url", None),
        )

    def get_project(self):
        """Get the mirror project (cached per client)"""
        if self._project is not None:
            return self._project
        try:
            self._project = self._with_retries(lambda: self.gl.projects.get(self.project_id))
            return self._project
        except gitlab.exceptions.GitlabGetError as e:
            logger.error(f"Failed to get project {self.project_id}: {e}")
            raise

    def get_all_issues(self) -> List[TargetIssue]:
        """Get all issues (open and closed) from the project"""
        try:
            project = self.get_project()
            # GitLab defaults to state=opened; closed mirrors matter for checklists and status.
            params = {"state": "all", "order_by": "created_at", "sort": "asc", "per_page": 100}
            issues = self._with_retries(lambda: project.issues.list(get_all=True, **params))
            return [self.to_target_issue(i) for i in issues]
        except Exception as e:
            logger.error(f"Failed to get issues for project {self.project_id}: {e}")
            raise

    def get_synced_issues(self, issues: Optional[Iterable[TargetIssue]] = None) -> List[TargetIssue]:
        """Issues whose description carries readable sync metadata"""
        if issues is None:
            issues = self.get_all_issues()
        return [i for i in issues if i.metadata is not None]

    def get_issue_by_number(self, number: int) -> Optional[TargetIssue]:
        """Get a specific issue by IID, returning None on 404."""
        if number < 0:
            return None
        try:
            project = self.get_project()
            return self.to_target_issue(self._with_retries(lambda: project.issues.get(number)))
        except gitlab.exceptions.GitlabGetError as e:
            if getattr(e, "response_code", None) == 404:
                return None
            logger.error(f"Failed to get issue #{number} from project {self.project_id}: {e}")
            raise

    def create_issue(
        self,
        title: str,
        body: str,
        labels: Optional[List[str]] = None,
        metadata: Optional[SyncMetadata] = None,
    ) -> int:
        """Create a new issue, returning its IID (a negative placeholder in dry-run)"""
        description = inject_metadata(body, metadata) if metadata else body
        if self.dry_run:
            self._dry_run_counter += 1
            placeholder = -self._dry_run_counter
            logger.info(f'[DRY RUN] Would create issue "{title}" (placeholder #{placeholder})')
            return placeholder
        try:
            project = self.get_project()
            payload = self._normalize_issue_payload(
                {"title": title, "description": description, "labels": labels or []}, for_update=False
            )
            issue = self._with_retries(lambda: project.issues.create(payload))
            logger.info(f"Created issue #{issue.iid} in project {self.project_id}")
            return int(issue.iid)
        except Exception as e:
            logger.error(f"Failed to create issue in project {self.project_id}: {e}")
            raise

    def update_issue(
        self,
        number: int,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        labels: Optional[List[str]] = None,
        state: Optional[str] = None,
        metadata: Optional[SyncMetadata] = None,
    ) -> None:
        """Update an existing issue; only the given fields are written.

        With `metadata` the block is injected into `body`, or into the
        current description when no body is given.
        """
        if self.dry_run:
            changed = [n for n, v in (("title", title), ("body", body), ("labels", labels), ("state", state), ("metadata", metadata)) if v is not None]
            logger.info(f"[DRY RUN] Would update issue #{number}: {', '.join(changed) or 'nothing'}")
            return
        try:
            project = self.get_project()
            issue = self._with_retries(lambda: project.issues.get(number))
            data: Dict[str, Any] = {}
            if title is not None:
                data["title"] = title
            if body is not None or metadata is not None:
                description = body if body is not None else (issue.description or "")
                data["description"] = inject_metadata(description, metadata) if metadata else description
            if labels is not None:
                data["labels"] = labels
            if state is not None:
                current = "closed" if issue.state == "closed" else "open"
                if state != current:
                    data["state_event"] = "close" if state == "closed" else "reopen"

            payload = self._normalize_issue_payload(data, for_update=True)
            for key, value in payload.items():
                setattr(issue, key, value)
            self._with_retries(lambda: issue.save())
            logger.info(f"Updated issue #{number} in project {self.project_id}")
        except Exception as e:
            logger.error(f"Failed to update issue #{number} in project {self.project_id}: {e}")
            raise

    def get_comments(self, number: int) -> List[Dict[str, Any]]:
        """User notes on an issue, oldest first; system notes are left out"""
        if number < 0:
            return []
        try:
            project = self.get_project()
            issue = self._with_retries(lambda: project.issues.get(number))
            notes = self._with_retries(
                lambda: issue.notes.list(get_all=True, per_page=100, order_by="created_at", sort="asc")
            )
            return [dict(n.attributes) for n in notes if not getattr(n, "system", False)]
        except Exception as e:
            logger.error(f"Failed to get notes for issue #{number}: {e}")
            raise

    def add_comment(self, number: int, body: str) -> None:
        """Create a note (comment) on an issue"""
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add note to issue #{number}")
            return
        try:
            project = self.get_project()
            issue = self._with_retries(lambda: project.issues.get(number))
            self._with_retries(lambda: issue.notes.create({"body": body}))
            logger.info(f"Created note on issue #{number}")
        except Exception as e:
            logger.error(f"Failed to create note on issue #{number}: {e}")
            raise

    def ensure_labels(self, labels: Iterable[str]) -> None:
        """Create project labels that do not exist yet"""
        wanted = [label for label in dict.fromkeys(labels) if label]
        if not wanted:
            return
        project = self.get_project()
        if self._known_labels is None:
            existing = self._with_retries(lambda: project.labels.list(get_all=True, per_page=100))
            self._known_labels = {label.name for label in existing}
        for name in wanted:
            if name in self._known_labels:
                continue
            if self.dry_run:
                logger.info(f"[DRY RUN] Would create label: {name}")
                self._known_labels.add(name)
                continue
            try:
                self._with_retries(lambda: project.labels.create({"name": name, "color": DEFAULT_LABEL_COLOR}))
                logger.info(f"Created label: {name}")
            except gitlab.exceptions.GitlabCreateError as e:
                # 409: created concurrently
                if getattr(e, "response_code", None) != 409:
                    logger.error(f"Failed to create label {name}: {e}")
                    raise
            self._known_labels.add(name)
