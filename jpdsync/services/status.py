"""Status translation between the JPD workflow and GitLab state/board columns"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from jpdsync.errors import TransitionNotAvailableError
from jpdsync.models.issues import TargetIssue
from jpdsync.models.report import StatusChange, StatusOutcome
from jpdsync.models.sync_config import StatusMapping

logger = logging.getLogger(__name__)


class StatusReconciler:
    """Forward and reverse status mapping.

    The reverse tables are the inversion of the configured forward table,
    keyed `state:<open|closed>` and `column:<label>`. A reverse key that
    inverts to more than one JPD status is never resolved.
    """

    def __init__(self, statuses: Optional[Mapping[str, StatusMapping]] = None):
        self.statuses: Dict[str, StatusMapping] = dict(statuses or {})
        self.reverse: Dict[str, List[str]] = {}
        for source_status, mapping in self.statuses.items():
            if mapping.target_state:
                self.reverse.setdefault(f"state:{mapping.target_state}", []).append(source_status)
            if mapping.target_column:
                self.reverse.setdefault(f"column:{mapping.target_column}", []).append(source_status)

    @property
    def columns(self) -> List[str]:
        """Every label used as a board column."""
        return sorted({m.target_column for m in self.statuses.values() if m.target_column})

    def forward(self, source_status: Optional[str]) -> Optional[StatusMapping]:
        if not source_status:
            return None
        return self.statuses.get(source_status)

    def sync_enabled(self, source_status: Optional[str]) -> bool:
        mapping = self.forward(source_status)
        return mapping is None or mapping.sync

    def apply_forward(
        self, source_status: Optional[str], labels: List[str]
    ) -> Tuple[Optional[str], List[str]]:
        """(target state or None, labels with exactly the mapped column label)"""
        mapping = self.forward(source_status)
        columns = set(self.columns)
        result = [label for label in labels if label not in columns]
        if mapping is None:
            return None, result
        if mapping.target_column:
            result.append(mapping.target_column)
        return mapping.target_state, result

    def resolve(self, issue: TargetIssue) -> Tuple[Optional[str], StatusOutcome, str]:
        """Resolve a mirror's state/column to one JPD status.

        Returns (status, outcome, reason); status is only set when the outcome
        is provisional, i.e. the caller still has to compare it with JPD.
        """
        ambiguous: List[str] = []

        candidates = self.reverse.get(f"state:{issue.state}", [])
        if len(candidates) == 1:
            return candidates[0], StatusOutcome.APPLIED, ""
        if len(candidates) > 1:
            ambiguous.append(f"state '{issue.state}' maps to {', '.join(candidates)}")

        columns = [label for label in issue.labels if f"column:{label}" in self.reverse]
        if len(columns) > 1:
            ambiguous.append(f"issue carries several column labels: {', '.join(columns)}")
        elif len(columns) == 1:
            candidates = self.reverse[f"column:{columns[0]}"]
            if len(candidates) == 1:
                return candidates[0], StatusOutcome.APPLIED, ""
            ambiguous.append(f"column '{columns[0]}' maps to {', '.join(candidates)}")

        if ambiguous:
            return None, StatusOutcome.SKIPPED_AMBIGUOUS, "; ".join(ambiguous)
        return None, StatusOutcome.SKIPPED_NO_MAPPING, f"no mapping for state '{issue.state}'"

    def reconcile(self, source: Any, issue: TargetIssue, dry_run: bool = False) -> StatusChange:
        """Translate one mirror's status back to JPD, transitioning at most once.

        Raises NotFoundError (from the source client) when the JPD issue is gone.
        """
        source_id = issue.metadata.source_id if issue.metadata else ""
        change = StatusChange(source_id=source_id, target_number=issue.number, outcome=StatusOutcome.SKIPPED_NO_MAPPING)

        resolved, outcome, reason = self.resolve(issue)
        change.outcome = outcome
        change.reason = reason
        if resolved is None:
            logger.debug(f"#{issue.number} ({source_id}): {outcome.value} {reason}")
            return change

        change.resolved_status = resolved
        current = source.get_issue(source_id, fields=["status"])
        current_status = ((current.get("fields") or {}).get("status") or {}).get("name")
        change.current_status = current_status

        if current_status == resolved:
            change.outcome = StatusOutcome.SKIPPED_SAME_VALUE
            logger.debug(f'{source_id} already "{resolved}"')
            return change

        try:
            source.transition_issue(source_id, resolved)
        except TransitionNotAvailableError as e:
            change.outcome = StatusOutcome.FAILED_NO_TRANSITION
            change.reason = str(e)
            logger.info(f"{source_id}: {e}")
            return change

        change.outcome = StatusOutcome.APPLIED
        prefix = "[DRY RUN] Would transition" if dry_run else "Transitioned"
        logger.info(f'{prefix} {source_id}: "{current_status}" -> "{resolved}" (from #{issue.number})')
        return change
