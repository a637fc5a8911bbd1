"""Domain records, reports and sync configuration"""

from jpdsync.models.issues import (
    CommentRecord,
    CommentSyncMarker,
    SourceIssue,
    SyncMetadata,
    TargetIssue,
)
from jpdsync.models.report import (
    CommentSyncReport,
    CreationReport,
    RunResult,
    StatusChange,
    StatusOutcome,
    StatusSyncReport,
    SyncReport,
)
from jpdsync.models.sync_config import SyncConfig, SyncDirection, load_sync_config

__all__ = [
    "CommentRecord",
    "CommentSyncMarker",
    "SourceIssue",
    "SyncMetadata",
    "TargetIssue",
    "CommentSyncReport",
    "CreationReport",
    "RunResult",
    "StatusChange",
    "StatusOutcome",
    "StatusSyncReport",
    "SyncReport",
    "SyncConfig",
    "SyncDirection",
    "load_sync_config",
]
