"""Services"""

from jpdsync.services.gitlab_client import GitLabClient
from jpdsync.services.jira_client import JiraClient
from jpdsync.services.sync_service import SyncEngine, build_engine, run_sync

__all__ = ["GitLabClient", "JiraClient", "SyncEngine", "build_engine", "run_sync"]
