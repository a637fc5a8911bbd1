"""Per-run sync reports"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


class StatusOutcome(str, enum.Enum):
    """Result of reconciling one mirror's status back to JPD"""

    SKIPPED_NO_MAPPING = "skipped-no-mapping"
    SKIPPED_AMBIGUOUS = "skipped-ambiguous"
    SKIPPED_SAME_VALUE = "skipped-same-value"
    APPLIED = "applied"
    FAILED_NO_TRANSITION = "failed-no-transition"


@dataclass
class IssueError:
    id: str
    message: str


@dataclass
class SyncReport:
    """JPD -> GitLab pass"""

    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    skipped_wrong_level: List[str] = field(default_factory=list)
    skipped_up_to_date: List[str] = field(default_factory=list)
    errors: List[IssueError] = field(default_factory=list)

    def add_error(self, issue_id: str, message: str) -> None:
        self.errors.append(IssueError(id=issue_id, message=message))

    @property
    def writes(self) -> int:
        return len(self.created) + len(self.updated)

    def summary(self) -> Dict[str, int]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "skipped_wrong_level": len(self.skipped_wrong_level),
            "skipped_up_to_date": len(self.skipped_up_to_date),
            "errors": len(self.errors),
        }


@dataclass
class StatusChange:
    source_id: str
    target_number: int
    outcome: StatusOutcome
    current_status: Optional[str] = None
    resolved_status: Optional[str] = None
    reason: str = ""


@dataclass
class StatusSyncReport:
    """GitLab -> JPD status pass"""

    changes: List[StatusChange] = field(default_factory=list)
    stale_cleaned: List[int] = field(default_factory=list)
    errors: List[IssueError] = field(default_factory=list)

    def add_error(self, issue_id: str, message: str) -> None:
        self.errors.append(IssueError(id=issue_id, message=message))

    def by_outcome(self, outcome: StatusOutcome) -> List[StatusChange]:
        return [c for c in self.changes if c.outcome == outcome]

    def summary(self) -> Dict[str, int]:
        counts = {o.value: 0 for o in StatusOutcome}
        for c in self.changes:
            counts[c.outcome.value] += 1
        counts["stale_cleaned"] = len(self.stale_cleaned)
        counts["errors"] = len(self.errors)
        return counts


@dataclass
class CreationReport:
    """GitLab -> JPD issue creation pass"""

    created: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[IssueError] = field(default_factory=list)

    def add_error(self, issue_id: str, message: str) -> None:
        self.errors.append(IssueError(id=issue_id, message=message))

    def summary(self) -> Dict[str, int]:
        return {"created": len(self.created), "errors": len(self.errors)}


@dataclass
class CommentSyncReport:
    posted_to_target: int = 0
    posted_to_source: int = 0
    errors: List[IssueError] = field(default_factory=list)

    def add_error(self, issue_id: str, message: str) -> None:
        self.errors.append(IssueError(id=issue_id, message=message))

    def summary(self) -> Dict[str, int]:
        return {
            "posted_to_target": self.posted_to_target,
            "posted_to_source": self.posted_to_source,
            "errors": len(self.errors),
        }


@dataclass
class RunResult:
    dry_run: bool = False
    source_to_target: Optional[SyncReport] = None
    target_to_source: Optional[StatusSyncReport] = None
    source_creation: Optional[CreationReport] = None
    comments: Optional[CommentSyncReport] = None

    @property
    def error_count(self) -> int:
        total = 0
        for part in (
            self.source_to_target,
            self.target_to_source,
            self.source_creation,
            self.comments,
        ):
            if part is not None:
                total += len(part.errors)
        return total

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
