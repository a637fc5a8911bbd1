"""Cross-posting of comments between JPD and GitLab.

Every copied comment ends with a hidden trailer:

    <!-- comment-sync:{"content_hash": "...", "source_comment_id": "10042", ...} -->

A comment that carries a trailer is a copy and is never copied again, and an
original is skipped once any comment on the other side references its id.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jpdsync.models.issues import CommentRecord, CommentSyncMarker

logger = logging.getLogger(__name__)

MARKER_PREFIX = "<!-- comment-sync:"
MARKER_SUFFIX = "-->"

_MARKER_RE = re.compile(r"<!--\s*comment-sync:(?P<json>.+?)-->", re.DOTALL)

_ORIGIN_LABEL = {"jpd": "JPD", "gitlab": "GitLab"}


def adf_to_markdown(body: Any) -> str:
    """Convert Atlassian Document Format to markdown.

    Plain strings pass through unchanged; unknown shapes are JSON-dumped so
    nothing is silently dropped.
    """
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    if isinstance(body, dict) and body.get("type") == "doc":
        return _blocks_to_markdown(body.get("content") or []).strip()
    return json.dumps(body)


def _blocks_to_markdown(nodes: List[Dict[str, Any]]) -> str:
    out = ""
    for node in nodes:
        kind = node.get("type")
        content = node.get("content") or []
        if kind == "paragraph":
            out += _inline_to_markdown(content) + "\n\n"
        elif kind == "heading":
            level = (node.get("attrs") or {}).get("level") or 1
            out += "#" * int(level) + " " + _inline_to_markdown(content) + "\n\n"
        elif kind in ("bulletList", "orderedList"):
            for n, item in enumerate(content, start=1):
                prefix = "- " if kind == "bulletList" else f"{n}. "
                first = (item.get("content") or [{}])[0]
                out += prefix + _inline_to_markdown(first.get("content") or []) + "\n"
            out += "\n"
        elif kind == "codeBlock":
            language = (node.get("attrs") or {}).get("language") or ""
            out += f"```{language}\n{_inline_to_markdown(content)}\n```\n\n"
        elif content:
            out += _inline_to_markdown(content) + "\n\n"
    return out


def _inline_to_markdown(nodes: List[Dict[str, Any]]) -> str:
    text = ""
    for node in nodes:
        kind = node.get("type")
        if kind == "text":
            value = node.get("text") or ""
            for mark in node.get("marks") or []:
                mark_type = mark.get("type")
                if mark_type == "strong":
                    value = f"**{value}**"
                elif mark_type == "em":
                    value = f"*{value}*"
                elif mark_type == "code":
                    value = f"`{value}`"
                elif mark_type == "link":
                    value = f"[{value}]({(mark.get('attrs') or {}).get('href', '')})"
            text += value
        elif kind == "hardBreak":
            text += "\n"
        elif node.get("content"):
            text += _inline_to_markdown(node["content"])
    return text


class CommentSyncManager:
    """Attribute, mark and deduplicate cross-posted comments"""

    def __init__(self, jpd_base_url: str = ""):
        self.jpd_base_url = (jpd_base_url or "").rstrip("/")

    @staticmethod
    def compute_hash(comment: CommentRecord) -> str:
        content = f"{comment.author_name}:{comment.body}:{comment.created}"
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    @staticmethod
    def extract_marker(body: Optional[str]) -> Optional[CommentSyncMarker]:
        if not body:
            return None
        m = _MARKER_RE.search(body)
        if not m:
            return None
        try:
            data = json.loads(m.group("json").strip())
        except ValueError as e:
            logger.warning(f"Ignoring unreadable comment sync marker: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return CommentSyncMarker(
            synced_from=str(data.get("synced_from", "")),
            source_comment_id=str(data.get("source_comment_id", "")),
            content_hash=str(data.get("content_hash", "")),
            synced_at=str(data.get("synced_at", "")),
        )

    @classmethod
    def is_synced(cls, body: Optional[str]) -> bool:
        return cls.extract_marker(body) is not None

    def format_comment(self, comment: CommentRecord) -> str:
        """Attribution header + body + trailer referencing the original."""
        name = comment.author_display or comment.author_name
        author = f"[{name}]({comment.author_url})" if comment.author_url else name
        origin = _ORIGIN_LABEL.get(comment.origin, comment.origin)
        marker = {
            "synced_from": comment.origin,
            "source_comment_id": comment.id,
            "content_hash": self.compute_hash(comment),
            "synced_at": datetime.now(timezone.utc).isoformat(),
        }
        trailer = f"{MARKER_PREFIX}{json.dumps(marker, sort_keys=True)}{MARKER_SUFFIX}"
        return f"**{author}** commented in {origin}:\n\n{comment.body}\n\n{trailer}"

    def should_sync(self, comment: CommentRecord, destination: Sequence[CommentRecord]) -> bool:
        if self.is_synced(comment.body):
            return False
        for other in destination:
            marker = self.extract_marker(other.body)
            if (
                marker is not None
                and marker.synced_from == comment.origin
                and marker.source_comment_id == comment.id
            ):
                return False
        return True

    def parse_jpd_comment(self, raw: Dict[str, Any]) -> CommentRecord:
        author = raw.get("author") or raw.get("updateAuthor") or {}
        account_id = author.get("accountId")
        profile = f"{self.jpd_base_url}/people/{account_id}" if account_id and self.jpd_base_url else None
        return CommentRecord(
            id=str(raw.get("id")),
            author_name=author.get("name") or author.get("emailAddress") or author.get("displayName") or "unknown",
            author_display=author.get("displayName"),
            author_url=profile,
            body=adf_to_markdown(raw.get("body")),
            created=raw.get("created"),
            origin="jpd",
        )

    @staticmethod
    def parse_gitlab_note(raw: Dict[str, Any]) -> CommentRecord:
        author = raw.get("author") or {}
        return CommentRecord(
            id=str(raw.get("id")),
            author_name=author.get("username") or "unknown",
            author_display=author.get("name") or author.get("username"),
            author_url=author.get("web_url"),
            body=raw.get("body") or "",
            created=raw.get("created_at"),
            origin="gitlab",
        )

    def sync_pair(self, source: Any, target: Any, source_key: str, number: int) -> Tuple[int, int]:
        """Cross-post missing comments for one mirrored pair.

        Both sides are read once up front, so copies posted in this call are
        never considered as originals in the same call.

        Returns (posted_to_target, posted_to_source).
        """
        jpd_comments = [self.parse_jpd_comment(c) for c in source.get_comments(source_key)]
        gitlab_comments = [self.parse_gitlab_note(n) for n in target.get_comments(number)]

        to_target = 0
        for comment in jpd_comments:
            if self.should_sync(comment, gitlab_comments):
                target.add_comment(number, self.format_comment(comment))
                to_target += 1

        to_source = 0
        for comment in gitlab_comments:
            if self.should_sync(comment, jpd_comments):
                source.add_comment(source_key, self.format_comment(comment))
                to_source += 1

        if to_target or to_source:
            logger.info(
                f"Comments {source_key} <-> #{number}: "
                f"{to_target} to GitLab, {to_source} to JPD"
            )
        return to_target, to_source
