"""Parent/child structure between JPD issues and their GitLab mirrors.

JPD has no native hierarchy: the level of an issue is derived from its
workflow status, and parent/child edges come from the `parent` field,
`subtasks`, or issue links of the configured hierarchy link type. On the
GitLab side the structure is rendered into the description as a parent
reference and a task-list checklist of children.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

from jpdsync.models.issues import SourceIssue, TargetIssue
from jpdsync.models.sync_config import HierarchyConfig
from jpdsync.services.metadata import METADATA_START

logger = logging.getLogger(__name__)

MAX_DEPTH = 8

PARENT_HEADER = "## Parent"
SUBTASKS_HEADER = "## Subtasks"
RELATED_HEADER = "## Related Issues"

_SUBTASKS_HEADER_RE = re.compile(r"^##\s+(?:\S+\s+)?Sub-?(?:tasks?|issues?)\s*$", re.MULTILINE | re.IGNORECASE)
_PARENT_REF_RE = re.compile(r"##\s+(?:\S+\s+)?Parent[\s\S]*?- GitLab: #(\d+)")


class HierarchyLevel(str, enum.Enum):
    IDEA = "idea"
    TASK = "task"
    STORY = "story"
    EPIC = "epic"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = [HierarchyLevel.IDEA, HierarchyLevel.TASK, HierarchyLevel.STORY, HierarchyLevel.EPIC]


@dataclass
class Relationships:
    parent_source_id: Optional[str] = None
    child_source_ids: List[str] = field(default_factory=list)
    related_source_ids: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.parent_source_id or self.child_source_ids or self.related_source_ids)


def _checklist_line_re(number: int, flags: str = "[x ]") -> re.Pattern:
    return re.compile(rf"^- \[{flags}\] #{number}(?!\d)", re.MULTILINE)


def _placeholder_line_re(key: str) -> re.Pattern:
    """Checklist line for a child that had no mirror yet: `- [ ] [KEY](url)`"""
    return re.compile(rf"^- \[[x ]\] (?P<link>\[{re.escape(key)}\]\([^)\n]*\))[^\n]*$", re.MULTILINE)


class HierarchyResolver:
    """Extract, classify and render issue hierarchy"""

    def __init__(self, config: Optional[HierarchyConfig] = None):
        self.config = config or HierarchyConfig()
        self._levels: Dict[HierarchyLevel, Set[str]] = {
            HierarchyLevel.EPIC: set(self.config.epic_statuses),
            HierarchyLevel.STORY: set(self.config.story_statuses),
            HierarchyLevel.TASK: set(self.config.task_statuses),
        }
        self._syncable = {HierarchyLevel(level) for level in self.config.syncable_levels}

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def extract_relationships(self, issue: SourceIssue) -> Relationships:
        rel = Relationships()
        if not self.enabled:
            return rel

        fields = issue.fields or {}
        parent = fields.get("parent")
        if isinstance(parent, dict) and parent.get("key"):
            rel.parent_source_id = parent["key"]

        for sub in fields.get("subtasks") or []:
            if sub.get("key") and sub["key"] not in rel.child_source_ids:
                rel.child_source_ids.append(sub["key"])

        for link in fields.get("issuelinks") or []:
            link_type = (link.get("type") or {}).get("name")
            inward = (link.get("inwardIssue") or {}).get("key")
            outward = (link.get("outwardIssue") or {}).get("key")
            if link_type == self.config.link_type:
                if inward and inward not in rel.child_source_ids:
                    rel.child_source_ids.append(inward)
                if outward:
                    rel.parent_source_id = outward
            else:
                for key in (inward, outward):
                    if key and key not in rel.related_source_ids:
                        rel.related_source_ids.append(key)
        return rel

    def classify(self, status: Optional[str]) -> HierarchyLevel:
        """Highest level whose status set contains `status`; idea otherwise."""
        if not status:
            return HierarchyLevel.IDEA
        for level in reversed(_LEVEL_ORDER):
            if status in self._levels.get(level, ()):
                return level
        return HierarchyLevel.IDEA

    def is_syncable(self, level: HierarchyLevel) -> bool:
        return level in self._syncable

    @staticmethod
    def render_relationships(
        relationships: Relationships,
        source_to_target: Mapping[str, int],
        base_url: str,
        target_by_number: Optional[Mapping[int, TargetIssue]] = None,
    ) -> str:
        """Markdown fragment with parent reference, children checklist and related issues."""
        base_url = (base_url or "").rstrip("/")
        target_by_number = target_by_number or {}

        def jpd_link(key: str) -> str:
            return f"[{key}]({base_url}/browse/{key})"

        out = ""
        if relationships.parent_source_id:
            key = relationships.parent_source_id
            out += f"\n\n{PARENT_HEADER}\n\n"
            number = source_to_target.get(key)
            if number is not None:
                out += f"- GitLab: #{number}\n"
            out += f"- JPD: {jpd_link(key)}\n"

        if relationships.child_source_ids:
            out += f"\n\n{SUBTASKS_HEADER}\n\n"
            for key in relationships.child_source_ids:
                number = source_to_target.get(key)
                if number is None:
                    out += f"- [ ] {jpd_link(key)}\n"
                    continue
                child = target_by_number.get(number)
                box = "[x]" if child is not None and child.is_closed else "[ ]"
                out += f"- {box} #{number} ({jpd_link(key)})\n"

        if relationships.related_source_ids:
            out += f"\n\n{RELATED_HEADER}\n\n"
            for key in relationships.related_source_ids:
                number = source_to_target.get(key)
                if number is None:
                    out += f"- {jpd_link(key)}\n"
                else:
                    out += f"- #{number} ({jpd_link(key)})\n"
        return out

    @staticmethod
    def ensure_in_parent_task_list(
        body: Optional[str],
        child_number: int,
        child_title: str,
        child_closed: bool,
        child_key: Optional[str] = None,
    ) -> Optional[str]:
        """Return the parent body with the child's checklist line correct, or None if already correct.

        A `- [ ] [KEY](url)` line written before the child had a mirror is
        rewritten in place to reference the new issue number.
        """
        body = body or ""
        expected = "x" if child_closed else " "
        placeholder = _placeholder_line_re(child_key) if child_key else None

        if _checklist_line_re(child_number).search(body):
            wrong = " " if child_closed else "x"
            updated = _checklist_line_re(child_number, wrong).sub(f"- [{expected}] #{child_number}", body)
            if placeholder is not None:
                updated = "\n".join(line for line in updated.split("\n") if not placeholder.fullmatch(line))
            return None if updated == body else updated

        if placeholder is not None and placeholder.search(body):
            return placeholder.sub(
                lambda m: f"- [{expected}] #{child_number} ({m.group('link')})", body, count=1
            )

        item = f"- [{expected}] #{child_number} {child_title}"
        header = _SUBTASKS_HEADER_RE.search(body)
        if header:
            lines = body.split("\n")
            header_idx = body[: header.start()].count("\n")
            insert_at = header_idx + 1
            while insert_at < len(lines) and lines[insert_at].strip() == "":
                insert_at += 1
            lines.insert(insert_at, item)
            return "\n".join(lines)

        section = f"\n\n{SUBTASKS_HEADER}\n\n{item}\n"
        meta_at = body.rfind(METADATA_START)
        if meta_at != -1:
            return body[:meta_at].rstrip("\n") + section + "\n" + body[meta_at:]
        return body + section

    @staticmethod
    def children_state_changed(
        relationships: Relationships,
        source_to_target: Mapping[str, int],
        target_by_number: Mapping[int, TargetIssue],
        parent_body: Optional[str],
    ) -> bool:
        """True when a mirrored child's checklist line in the parent is stale.

        Stale means the open/closed box disagrees with the child, or a
        `[KEY](url)` placeholder line is still there for a child that now
        has a mirror.
        """
        parent_body = parent_body or ""
        for key in relationships.child_source_ids:
            number = source_to_target.get(key)
            if number is None:
                continue
            if _placeholder_line_re(key).search(parent_body):
                return True
            child = target_by_number.get(number)
            if child is None:
                continue
            checked = bool(_checklist_line_re(number, "x").search(parent_body))
            unchecked = bool(_checklist_line_re(number, " ").search(parent_body))
            if child.is_closed and not checked:
                return True
            if not child.is_closed and not unchecked:
                return True
        return False

    @staticmethod
    def parent_reference(issue: TargetIssue) -> Optional[int]:
        if issue.metadata is not None and issue.metadata.parent_target_ref is not None:
            return issue.metadata.parent_target_ref
        m = _PARENT_REF_RE.search(issue.body or "")
        return int(m.group(1)) if m else None

    def parent_depth(
        self,
        number: int,
        lookup: Callable[[int], Optional[TargetIssue]],
        visited: Optional[Set[int]] = None,
    ) -> int:
        """Depth of a target issue in its parent chain (root = 1); a revisited issue counts 0."""
        visited = visited if visited is not None else set()
        if number in visited:
            logger.warning(f"Circular reference detected in hierarchy at issue #{number}")
            return 0
        visited.add(number)

        issue = lookup(number)
        if issue is None:
            return 1
        parent = self.parent_reference(issue)
        if parent is None:
            return 1
        return self.parent_depth(parent, lookup, visited) + 1

    def can_nest_under(self, parent_number: int, lookup: Callable[[int], Optional[TargetIssue]]) -> bool:
        depth = self.parent_depth(parent_number, lookup)
        if depth >= MAX_DEPTH:
            logger.warning(
                f"Cannot nest under #{parent_number}: depth limit reached "
                f"({depth} levels, max {MAX_DEPTH})"
            )
            return False
        return True


def child_numbers(body: Optional[str]) -> List[int]:
    """Issue numbers referenced by task-list items (`- [ ] #12`, `- [x] #12`)."""
    return [int(n) for n in re.findall(r"^- \[[x ]\] #(\d+)", body or "", re.MULTILINE)]


def index_by_number(issues: Iterable[TargetIssue]) -> Dict[int, TargetIssue]:
    return {issue.number: issue for issue in issues}
