"""Hidden sync metadata embedded in GitLab issue descriptions.

The block is an HTML comment, invisible in rendered markdown:

    <!-- jpd-sync-metadata
    {
      "content_hash": "...",
      "source_id": "MTT-12",
      ...
    }
    -->

Parsing always looks at the *last* start delimiter so text that merely quotes
the delimiter earlier in a description cannot shadow the real block. Parsing
never raises: anything unreadable is reported as "no metadata".
"""

import json
import logging
import re
from typing import Optional

from jpdsync.models.issues import SyncMetadata

logger = logging.getLogger(__name__)

METADATA_START = "<!-- jpd-sync-metadata"
METADATA_END = "-->"

_METADATA_BLOCK_RE = re.compile(r"\n*<!--\s*jpd-sync-metadata[\s\S]*?-->", re.IGNORECASE)


def _locate(body: str) -> Optional[tuple[int, int]]:
    """(start, end) offsets of the last metadata block, end exclusive."""
    start = body.rfind(METADATA_START)
    if start == -1:
        return None
    end = body.find(METADATA_END, start + len(METADATA_START))
    if end == -1:
        return None
    return start, end + len(METADATA_END)


def has_metadata_marker(body: Optional[str]) -> bool:
    return bool(body) and METADATA_START in body


def parse_metadata(body: Optional[str]) -> Optional[SyncMetadata]:
    """Extract the embedded metadata, or None when absent or malformed."""
    if not body:
        return None
    span = _locate(body)
    if span is None:
        return None
    start, end = span
    raw = body[start + len(METADATA_START) : end - len(METADATA_END)].strip()
    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Ignoring malformed sync metadata JSON: {e}")
        return None
    if not isinstance(data, dict):
        return None
    return SyncMetadata.from_dict(data)


def render_metadata(metadata: SyncMetadata) -> str:
    payload = json.dumps(metadata.to_dict(), sort_keys=True, indent=2, ensure_ascii=False)
    return f"{METADATA_START}\n{payload}\n{METADATA_END}"


def inject_metadata(body: Optional[str], metadata: SyncMetadata) -> str:
    """Replace the existing block in place, or append a new one at the end."""
    body = body or ""
    block = render_metadata(metadata)
    if parse_metadata(body) is not None:
        start, end = _locate(body)  # type: ignore[misc]
        return body[:start] + block + body[end:]
    if not body:
        return block
    return f"{body}\n\n{block}"


def strip_metadata(body: Optional[str]) -> str:
    """Remove every metadata block (used when the JPD issue is gone)."""
    return _METADATA_BLOCK_RE.sub("", body or "").strip()
