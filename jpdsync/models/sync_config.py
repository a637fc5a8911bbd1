"""Sync configuration schema (YAML file) and loader"""

from __future__ import annotations

import enum
import logging
import re
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from jpdsync.errors import ConfigurationError

logger = logging.getLogger(__name__)


class SyncDirection(str, enum.Enum):
    """Which passes a run executes"""

    SOURCE_TO_TARGET = "jpd-to-gitlab"
    TARGET_TO_SOURCE = "gitlab-to-jpd"
    BIDIRECTIONAL = "bidirectional"

    @property
    def pushes_to_target(self) -> bool:
        return self in (SyncDirection.SOURCE_TO_TARGET, SyncDirection.BIDIRECTIONAL)

    @property
    def pulls_to_source(self) -> bool:
        return self in (SyncDirection.TARGET_TO_SOURCE, SyncDirection.BIDIRECTIONAL)


FieldType = Literal[
    "string",
    "text",
    "number",
    "select",
    "multiselect",
    "user",
    "date",
    "datetime",
    "url",
    "array",
]


class SyncSection(BaseModel):
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    jql: Optional[str] = None
    # Cron expression used by `jpdsync serve`.
    poll_interval: str = "*/15 * * * *"


class FieldMapping(BaseModel):
    """One source field -> one target field.

    At most one of `function`, `template` or `lookup` should be set; with none
    of them the source value is copied directly.
    """

    source: Union[str, List[str]]
    target: str
    template: Optional[str] = None
    lookup: Optional[Dict[str, str]] = None
    function: Optional[str] = None


class StatusMapping(BaseModel):
    target_state: Optional[Literal["open", "closed"]] = None
    # GitLab board list label.
    target_column: Optional[str] = None
    sync: bool = True


class HierarchyConfig(BaseModel):
    enabled: bool = True
    # Jira issue link type that encodes parent/child; every other type is "related".
    link_type: str = "Subtask"
    epic_statuses: List[str] = Field(default_factory=lambda: ["Epic Design"])
    story_statuses: List[str] = Field(
        default_factory=lambda: ["Backlog", "Ready", "In Progress", "In Review"]
    )
    task_statuses: List[str] = Field(default_factory=list)
    syncable_levels: List[str] = Field(default_factory=lambda: ["epic", "story"])


class FieldDefinition(BaseModel):
    id: str
    name: str
    type: FieldType
    required: bool = False
    description: Optional[str] = None


class CreationFieldIds(BaseModel):
    category_field_id: Optional[str] = None
    priority_field_id: Optional[str] = None


class TargetToSourceCreation(BaseModel):
    """Create JPD issues for GitLab issues that carry no sync metadata."""

    enabled: bool = False
    label_to_category: Dict[str, str] = Field(default_factory=dict)
    default_category: str = "Idea"
    default_status: str = "Backlog"
    default_priority: Optional[str] = None
    issue_type: str = "Idea"
    field_mappings: CreationFieldIds = Field(default_factory=CreationFieldIds)


class SyncConfig(BaseModel):
    sync: SyncSection = Field(default_factory=SyncSection)
    mappings: List[FieldMapping] = Field(default_factory=list)
    statuses: Dict[str, StatusMapping] = Field(default_factory=dict)
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)
    fields: List[FieldDefinition] = Field(default_factory=list)
    target_to_source_creation: TargetToSourceCreation = Field(
        default_factory=TargetToSourceCreation
    )

    def project_key(self, fallback: Optional[str] = None) -> Optional[str]:
        """Project key from `project = KEY` in the JQL, else the fallback."""
        m = re.search(r"project\s*=\s*\"?([A-Za-z][A-Za-z0-9_]*)", self.sync.jql or "")
        if m:
            return m.group(1).upper()
        return fallback or None


def load_sync_config(path: Union[str, Path]) -> SyncConfig:
    """Load and validate the YAML sync config. Any problem is a ConfigurationError."""
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Sync config not found: {p}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Sync config {p} is not valid YAML: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Sync config {p} must be a mapping at the top level")

    try:
        config = SyncConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Sync config {p} failed schema validation:\n{e}") from e

    logger.debug(
        f"Loaded sync config from {p}: direction={config.sync.direction.value}, "
        f"{len(config.mappings)} mappings, {len(config.statuses)} statuses"
    )
    return config
