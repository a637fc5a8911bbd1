"""Issue synchronization service"""

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from jpdsync.errors import ConfigurationError, NotFoundError, TransitionNotAvailableError, ValidationFailedError
from jpdsync.models.issues import SourceIssue, SyncMetadata, TargetIssue
from jpdsync.models.report import (
    CommentSyncReport,
    CreationReport,
    RunResult,
    StatusSyncReport,
    SyncReport,
)
from jpdsync.models.sync_config import SyncConfig, SyncDirection, load_sync_config
from jpdsync.services.comments import CommentSyncManager
from jpdsync.services.hierarchy import HierarchyResolver, child_numbers, index_by_number
from jpdsync.services.jira_client import markdown_to_adf
from jpdsync.services.metadata import has_metadata_marker, inject_metadata, strip_metadata
from jpdsync.services.status import StatusReconciler
from jpdsync.services.transformer import TransformerEngine
from jpdsync.services.validator import FieldValidator

logger = logging.getLogger(__name__)

# One pass at a time per process (scheduler ticks, webhooks and manual triggers share it).
run_lock = threading.Lock()
last_result: Dict[str, Any] = {}


def compute_content_hash(
    source_id: str,
    updated: Optional[str],
    summary: Optional[str],
    status: Optional[str],
    parent: Optional[str],
    hierarchy_level: Optional[str],
) -> str:
    """Fingerprint of the fields that decide whether a mirror needs rewriting."""
    payload = {
        "id": source_id,
        "updated": updated,
        "summary": summary,
        "status": status,
        "parent": parent,
        "hierarchy": hierarchy_level,
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class SyncEngine:
    """Drives one bounded batch pass between JPD and GitLab.

    `source` is a JiraClient-like object and `target` a GitLabClient-like one;
    both own the dry-run switch for their mutating calls.
    """

    def __init__(
        self,
        config: SyncConfig,
        source: Any,
        target: Any,
        *,
        jpd_base_url: str = "",
        dry_run: bool = False,
        limit: int = 500,
        project_key: Optional[str] = None,
        functions: Optional[Mapping[str, Callable]] = None,
    ):
        self.config = config
        self.source = source
        self.target = target
        self.base_url = (jpd_base_url or "").rstrip("/")
        self.dry_run = dry_run
        self.limit = limit
        self.project_key = config.project_key(project_key)

        self.hierarchy = HierarchyResolver(config.hierarchy)
        self.status = StatusReconciler(config.statuses)
        self.transformer = TransformerEngine(functions)
        self.comments = CommentSyncManager(self.base_url)

    @staticmethod
    def _utcnow() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _browse_url(self, key: str) -> str:
        return f"{self.base_url}/browse/{key}"

    # ------------------------------------------------------------------
    # Orchestration

    def validate(self) -> None:
        """Everything that must hold before the first write. Raises on failure."""
        self.transformer.check_mappings(self.config.mappings)
        if not self.config.fields:
            return
        if not self.project_key:
            raise ConfigurationError(
                "Field validation needs a project key: add `project = KEY` to sync.jql or set JPD_PROJECT_KEY"
            )
        validator = FieldValidator(self.source, self.config.fields, self.base_url)
        result = validator.validate(self.project_key)
        for warning in result.warnings:
            logger.warning(warning)
        if not result.valid:
            raise ValidationFailedError(result)

    def run(self) -> RunResult:
        """Validate, then run the passes the configured direction asks for."""
        direction = self.config.sync.direction
        logger.info(f"Starting sync ({direction.value}){' [DRY RUN]' if self.dry_run else ''}")
        self.validate()

        result = RunResult(dry_run=self.dry_run)
        if direction.pushes_to_target:
            result.source_to_target = self.run_source_to_target()
        if direction.pulls_to_source:
            result.target_to_source = self.run_target_to_source()
            if self.config.target_to_source_creation.enabled:
                result.source_creation = self.create_source_from_target()
        if direction is SyncDirection.BIDIRECTIONAL:
            result.comments = self.sync_comments()

        logger.info(f"Sync completed with {result.error_count} error(s)")
        return result

    # ------------------------------------------------------------------
    # JPD -> GitLab

    def _source_jql(self) -> str:
        if self.config.sync.jql:
            return self.config.sync.jql
        if self.project_key:
            return f"project = {self.project_key} ORDER BY updated DESC"
        raise ConfigurationError("Set sync.jql in the sync config or JPD_PROJECT_KEY")

    @staticmethod
    def index_mirrors(issues: List[TargetIssue]) -> Dict[str, TargetIssue]:
        """source id -> mirror, rebuilt from embedded metadata; the oldest mirror wins."""
        mirrors: Dict[str, TargetIssue] = {}
        for issue in sorted(issues, key=lambda i: i.number):
            if issue.metadata is None:
                continue
            source_id = issue.metadata.source_id
            if source_id in mirrors:
                logger.warning(
                    f"Duplicate mirror for {source_id}: #{issue.number} ignored, using #{mirrors[source_id].number}"
                )
                continue
            mirrors[source_id] = issue
        return mirrors

    def run_source_to_target(self) -> SyncReport:
        report = SyncReport()
        jql = self._source_jql()
        found = self.source.search_issues(jql, fields=["*all"], limit=self.limit)
        issues = [SourceIssue.from_api(raw) for raw in found.get("issues") or []]
        logger.info(f"JPD -> GitLab: {len(issues)} JPD issues for '{jql}'")

        all_target = self.target.get_all_issues()
        by_number = index_by_number(all_target)
        mirrors = self.index_mirrors(all_target)
        source_to_target = {sid: issue.number for sid, issue in mirrors.items()}

        # Higher levels first.
        issues.sort(key=lambda i: self.hierarchy.classify(i.status).rank, reverse=True)

        for issue in issues:
            try:
                self._sync_source_issue(issue, mirrors, source_to_target, by_number, report)
            except Exception as e:
                logger.error(f"Failed to sync {issue.key}: {e}")
                report.add_error(issue.key, str(e))

        logger.info(f"JPD -> GitLab completed: {report.summary()}")
        return report

    def _sync_source_issue(
        self,
        issue: SourceIssue,
        mirrors: Dict[str, TargetIssue],
        source_to_target: Dict[str, int],
        by_number: Dict[int, TargetIssue],
        report: SyncReport,
    ) -> None:
        if not self.status.sync_enabled(issue.status):
            logger.debug(f"{issue.key}: status '{issue.status}' has sync disabled")
            report.skipped_wrong_level.append(issue.key)
            return

        level = self.hierarchy.classify(issue.status)
        if not self.hierarchy.is_syncable(level):
            logger.debug(f"{issue.key}: {level.value} level ({issue.status}) is not synced")
            report.skipped_wrong_level.append(issue.key)
            return

        rel = self.hierarchy.extract_relationships(issue)
        content_hash = compute_content_hash(
            issue.key, issue.updated, issue.summary, issue.status, rel.parent_source_id, level.value
        )

        match = mirrors.get(issue.key)
        parent_number = source_to_target.get(rel.parent_source_id) if rel.parent_source_id else None
        linked = match is not None and match.metadata.parent_target_ref == parent_number
        nest = parent_number is not None
        if nest and not linked:
            nest = self.hierarchy.can_nest_under(parent_number, lambda n: self._lookup(n, by_number))

        if match is not None and match.metadata.content_hash == content_hash:
            if nest and not linked:
                logger.debug(f"{issue.key}: parent {rel.parent_source_id} is now mirrored, linking #{match.number}")
            elif not self.hierarchy.children_state_changed(rel, source_to_target, by_number, match.body):
                report.skipped_up_to_date.append(issue.key)
                return
            else:
                logger.debug(f"{issue.key}: child checklist is stale, updating #{match.number}")

        payload = self.transformer.build_payload(self.config.mappings, issue)
        title = str(payload.get("title") or issue.summary)
        state, labels = self.status.apply_forward(issue.status, list(dict.fromkeys(payload["labels"])))

        render_map = source_to_target
        if parent_number is not None and not nest:
            logger.warning(f"{issue.key}: creating flat, not nested under #{parent_number}")
            render_map = {k: v for k, v in source_to_target.items() if k != rel.parent_source_id}
            parent_number = None

        body = str(payload.get("body") or "")
        if not rel.is_empty:
            body += self.hierarchy.render_relationships(rel, render_map, self.base_url, by_number)
        body = body.strip()

        metadata = SyncMetadata(
            source_id=issue.key,
            source_updated=issue.updated,
            last_sync=self._utcnow(),
            content_hash=content_hash,
            hierarchy_level=level.value,
            parent_source_id=rel.parent_source_id,
            parent_target_ref=parent_number,
            child_source_ids=list(rel.child_source_ids),
            original_link=self._browse_url(issue.key),
            created_from_target=bool(match and match.metadata.created_from_target),
        )

        if labels:
            self.target.ensure_labels(labels)

        if match is not None:
            self.target.update_issue(
                match.number, title=title, body=body, labels=labels, state=state, metadata=metadata
            )
            match.title = title
            match.body = inject_metadata(body, metadata)
            match.labels = labels
            match.metadata = metadata
            if state:
                match.state = state
            report.updated.append(issue.key)
            number = match.number
        else:
            number = self.target.create_issue(title, body, labels, metadata)
            if state == "closed":
                self.target.update_issue(number, state="closed")
            mirror = TargetIssue(
                number=number,
                title=title,
                body=inject_metadata(body, metadata),
                labels=labels,
                state=state or "open",
                metadata=metadata,
            )
            mirrors[issue.key] = mirror
            by_number[number] = mirror
            source_to_target[issue.key] = number
            report.created.append(issue.key)

        if parent_number is not None:
            self._ensure_in_parent(parent_number, number, issue.key, title, by_number[number].is_closed, by_number)

    def _lookup(self, number: int, by_number: Dict[int, TargetIssue]) -> Optional[TargetIssue]:
        if number in by_number:
            return by_number[number]
        return self.target.get_issue_by_number(number)

    def _ensure_in_parent(
        self,
        parent_number: int,
        child_number: int,
        child_key: str,
        title: str,
        closed: bool,
        by_number: Dict[int, TargetIssue],
    ) -> None:
        parent = self._lookup(parent_number, by_number)
        if parent is None:
            logger.warning(f"Parent #{parent_number} not found; #{child_number} left out of its task list")
            return
        new_body = self.hierarchy.ensure_in_parent_task_list(
            parent.body, child_number, title, closed, child_key=child_key
        )
        if new_body is None:
            return
        self.target.update_issue(parent_number, body=new_body)
        parent.body = new_body
        logger.info(f"Task list of #{parent_number} now tracks #{child_number}")

    # ------------------------------------------------------------------
    # GitLab -> JPD

    def run_target_to_source(self) -> StatusSyncReport:
        report = StatusSyncReport()
        synced = self.target.get_synced_issues()
        logger.info(f"GitLab -> JPD: checking {len(synced)} mirrored issues for status changes")

        for issue in synced:
            source_id = issue.metadata.source_id
            try:
                report.changes.append(self.status.reconcile(self.source, issue, dry_run=self.dry_run))
            except NotFoundError:
                logger.info(f"{source_id} no longer exists in JPD - removing stale metadata from #{issue.number}")
                self.target.update_issue(issue.number, body=strip_metadata(issue.body))
                report.stale_cleaned.append(issue.number)
            except Exception as e:
                logger.error(f"Failed to sync status of #{issue.number} ({source_id}): {e}")
                report.add_error(source_id or f"#{issue.number}", str(e))

        logger.info(f"GitLab -> JPD completed: {report.summary()}")
        return report

    def create_source_from_target(self) -> CreationReport:
        """Create JPD issues for GitLab issues that have never been synced."""
        report = CreationReport()
        creation = self.config.target_to_source_creation
        if not creation.enabled:
            return report
        if not self.project_key:
            raise ConfigurationError("Issue creation in JPD needs a project key (sync.jql or JPD_PROJECT_KEY)")

        all_target = self.target.get_all_issues()
        parent_of: Dict[int, TargetIssue] = {}
        for issue in all_target:
            if issue.metadata is None:
                continue
            for child in child_numbers(issue.body):
                parent_of.setdefault(child, issue)

        candidates = [i for i in all_target if i.metadata is None]
        logger.info(f"GitLab -> JPD creation: {len(candidates)} unsynced GitLab issues")
        for issue in candidates:
            if has_metadata_marker(issue.body):
                logger.warning(f"#{issue.number} has unreadable sync metadata; not creating a JPD issue for it")
                continue
            try:
                report.created.append(self._create_source_issue(issue, parent_of.get(issue.number)))
            except Exception as e:
                logger.error(f"Failed to create JPD issue for #{issue.number}: {e}")
                report.add_error(f"#{issue.number}", str(e))
        return report

    def _create_source_issue(self, issue: TargetIssue, parent: Optional[TargetIssue]) -> Dict[str, Any]:
        creation = self.config.target_to_source_creation
        category = next(
            (creation.label_to_category[label] for label in issue.labels if label in creation.label_to_category),
            creation.default_category,
        )
        fields: Dict[str, Any] = {
            "project": {"key": self.project_key},
            "summary": issue.title,
            "issuetype": {"name": creation.issue_type},
        }
        if issue.body:
            fields["description"] = markdown_to_adf(issue.body)
        ids = creation.field_mappings
        if ids.category_field_id:
            fields[ids.category_field_id] = {"value": category}
        if ids.priority_field_id and creation.default_priority:
            fields[ids.priority_field_id] = {"value": creation.default_priority}

        key = self.source.create_issue({"fields": fields})

        if creation.default_status and not self.dry_run:
            current = self.source.get_issue(key, fields=["status"])
            current_status = ((current.get("fields") or {}).get("status") or {}).get("name")
            if current_status != creation.default_status:
                try:
                    self.source.transition_issue(key, creation.default_status)
                except TransitionNotAvailableError as e:
                    logger.warning(f"{key} created but left in '{current_status}': {e}")

        parent_source_id = parent.metadata.source_id if parent is not None else None
        if parent_source_id:
            self.source.create_link(key, parent_source_id, "relates to")

        metadata = SyncMetadata(
            source_id=key,
            last_sync=self._utcnow(),
            parent_source_id=parent_source_id,
            parent_target_ref=parent.number if parent is not None else None,
            original_link=self._browse_url(key),
            created_from_target=True,
        )
        self.target.update_issue(issue.number, metadata=metadata)
        issue.metadata = metadata
        logger.info(f"Created {key} in JPD from #{issue.number} (category {category})")
        return {"target_number": issue.number, "source_id": key, "category": category, "parent": parent_source_id}

    # ------------------------------------------------------------------
    # Comments

    def sync_comments(self) -> CommentSyncReport:
        report = CommentSyncReport()
        synced = self.target.get_synced_issues()
        logger.info(f"Comment sync: {len(synced)} mirrored pairs")
        for issue in synced:
            source_id = issue.metadata.source_id
            try:
                to_target, to_source = self.comments.sync_pair(self.source, self.target, source_id, issue.number)
                report.posted_to_target += to_target
                report.posted_to_source += to_source
            except Exception as e:
                logger.error(f"Failed to sync comments for {source_id} <-> #{issue.number}: {e}")
                report.add_error(source_id, str(e))
        logger.info(f"Comment sync completed: {report.summary()}")
        return report


def build_engine(settings: Any, *, dry_run: Optional[bool] = None, direction: Optional[str] = None) -> SyncEngine:
    """Wire config, clients and engine from environment settings."""
    from jpdsync.services.gitlab_client import GitLabClient
    from jpdsync.services.jira_client import JiraClient

    config = load_sync_config(settings.sync_config_path)
    if direction:
        config.sync.direction = SyncDirection(direction)
    dry = settings.dry_run if dry_run is None else dry_run

    missing = [
        name
        for name in ("jpd_base_url", "jpd_email", "jpd_api_key", "gitlab_token", "gitlab_project")
        if not getattr(settings, name)
    ]
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(n.upper() for n in missing)}")

    source = JiraClient(settings.jpd_base_url, settings.jpd_email, settings.jpd_api_key, dry_run=dry)
    target = GitLabClient(settings.gitlab_url, settings.gitlab_token, settings.gitlab_project, dry_run=dry)
    return SyncEngine(
        config,
        source,
        target,
        jpd_base_url=settings.jpd_base_url,
        dry_run=dry,
        limit=settings.sync_limit,
        project_key=settings.jpd_project_key,
    )


def run_sync(settings: Any, *, trigger: str = "manual", **kwargs) -> Optional[RunResult]:
    """Run one pass unless another one is in progress in this process."""
    if not run_lock.acquire(blocking=False):
        logger.warning(f"Sync already running; {trigger} trigger ignored")
        return None
    try:
        logger.info(f"Running {trigger} sync")
        result = build_engine(settings, **kwargs).run()
        last_result.clear()
        last_result.update(
            {"trigger": trigger, "finished_at": datetime.now(timezone.utc).isoformat(), "result": result.to_dict()}
        )
        return result
    finally:
        run_lock.release()
