"""Store-agnostic issue, comment and metadata records"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class SyncMetadata:
    """Sync state embedded in a GitLab issue description."""

    source_id: str
    source_updated: Optional[str] = None
    last_sync: Optional[str] = None
    content_hash: Optional[str] = None
    hierarchy_level: Optional[str] = None
    parent_source_id: Optional[str] = None
    parent_target_ref: Optional[int] = None
    child_source_ids: List[str] = field(default_factory=list)
    original_link: Optional[str] = None
    created_from_target: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["SyncMetadata"]:
        """Build from decoded JSON; None when the required id is missing or mistyped."""
        source_id = data.get("source_id")
        if not isinstance(source_id, str) or not source_id:
            return None
        children = data.get("child_source_ids") or []
        if not isinstance(children, list):
            return None
        parent_ref = data.get("parent_target_ref")
        try:
            parent_ref = int(parent_ref) if parent_ref is not None else None
        except (TypeError, ValueError):
            parent_ref = None
        return cls(
            source_id=source_id,
            source_updated=data.get("source_updated"),
            last_sync=data.get("last_sync"),
            content_hash=data.get("content_hash"),
            hierarchy_level=data.get("hierarchy_level"),
            parent_source_id=data.get("parent_source_id"),
            parent_target_ref=parent_ref,
            child_source_ids=[str(c) for c in children],
            original_link=data.get("original_link"),
            created_from_target=bool(data.get("created_from_target", False)),
        )


@dataclass
class SourceIssue:
    """A JPD issue as returned by the Jira search API."""

    key: str
    summary: str
    status: Optional[str]
    updated: Optional[str]
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "SourceIssue":
        fields = payload.get("fields") or {}
        status = fields.get("status")
        return cls(
            key=str(payload.get("key")),
            summary=fields.get("summary") or "",
            status=status.get("name") if isinstance(status, dict) else status,
            updated=fields.get("updated"),
            fields=fields,
        )

    def as_template_data(self) -> Dict[str, Any]:
        """Shape exposed to templates and custom functions: {key, fields}."""
        return {"key": self.key, "fields": self.fields}


@dataclass
class TargetIssue:
    """A GitLab issue normalized to open/closed state."""

    number: int
    title: str
    body: str = ""
    labels: List[str] = field(default_factory=list)
    state: str = "open"
    metadata: Optional[SyncMetadata] = None
    updated_at: Optional[str] = None
    web_url: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"


@dataclass
class CommentRecord:
    """A comment from either store, normalized to markdown."""

    id: str
    author_name: str
    body: str
    created: Optional[str]
    origin: str  # "jpd" | "gitlab"
    author_display: Optional[str] = None
    author_url: Optional[str] = None


@dataclass
class CommentSyncMarker:
    """Trailer appended to every cross-posted comment."""

    synced_from: str
    source_comment_id: str
    content_hash: str
    synced_at: str
