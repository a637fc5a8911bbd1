"""Field value derivation: templates, lookup tables and registered functions"""

from __future__ import annotations

import enum
import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional

from jpdsync.errors import ConfigurationError
from jpdsync.models.issues import SourceIssue
from jpdsync.models.sync_config import FieldMapping
from jpdsync.services.comments import adf_to_markdown

logger = logging.getLogger(__name__)

TransformFunction = Callable[[Dict[str, Any]], Any]

_PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")
_INDEX_RE = re.compile(r"^(.+)\[(\d+)\]$")
_FILTER_RE = re.compile(r"^(\w+)(?:\((.*)\))?$")


def get_path(data: Any, path: str) -> Any:
    """Resolve `fields.summary` or `fields.labels[0].value` style paths."""
    current = data
    for part in path.split("."):
        if current is None:
            return None
        m = _INDEX_RE.match(part)
        if m:
            container = current.get(m.group(1)) if isinstance(current, dict) else None
            idx = int(m.group(2))
            if not isinstance(container, list) or idx >= len(container):
                return None
            current = container[idx]
            continue
        current = current.get(part) if isinstance(current, dict) else None
    return current


def unwrap_value(value: Any) -> Any:
    """Unwrap JPD select ({value}) and multiselect ([{value}]) shapes."""
    if isinstance(value, dict) and value.get("value") is not None:
        return value["value"]
    if isinstance(value, list) and value and isinstance(value[0], dict) and "value" in value[0]:
        return [v.get("value") for v in value]
    return value


class TemplateParser:
    """`{{path | filter | filter(arg, arg)}}` substitution."""

    @classmethod
    def parse(cls, template: str, data: Dict[str, Any]) -> str:
        def _sub(m: re.Match) -> str:
            parts = [p.strip() for p in m.group(1).split("|")]
            value = get_path(data, parts[0])
            for flt in parts[1:]:
                value = cls.apply_filter(value, flt)
            return "" if value is None else str(value)

        return _PLACEHOLDER_RE.sub(_sub, template)

    @staticmethod
    def apply_filter(value: Any, flt: str) -> Any:
        m = _FILTER_RE.match(flt)
        if not m:
            return value
        name = m.group(1).lower()
        args = []
        if m.group(2):
            args = [a.strip().strip("'\"") for a in re.split(r",\s*", m.group(2))]

        if name == "lowercase":
            return value.lower() if isinstance(value, str) else value
        if name == "uppercase":
            return value.upper() if isinstance(value, str) else value
        if name == "trim":
            return value.strip() if isinstance(value, str) else value
        if name == "slugify":
            if not isinstance(value, str):
                return value
            return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
        if name == "replace":
            if isinstance(value, str) and len(args) >= 2:
                return value.replace(args[0], args[1])
            return value
        if name == "join":
            if isinstance(value, list):
                sep = args[0] if args else ", "
                return sep.join(str(unwrap_value(v)) for v in value)
            return value
        logger.debug(f"Unknown template filter '{name}' ignored")
        return value


def description_markdown(data: Dict[str, Any]) -> str:
    """Issue description (ADF) as markdown."""
    return adf_to_markdown((data.get("fields") or {}).get("description"))


def select_labels(data: Dict[str, Any]) -> list:
    """Slugified labels from a select, multiselect or plain list source value."""
    raw = unwrap_value(data.get("value"))
    if raw is None:
        return []
    values = raw if isinstance(raw, list) else [raw]
    return [TemplateParser.apply_filter(str(v), "slugify") for v in values if v not in (None, "")]


BUILTIN_FUNCTIONS: Dict[str, TransformFunction] = {
    "description_markdown": description_markdown,
    "select_labels": select_labels,
}


class TransformKind(str, enum.Enum):
    CUSTOM_FUNCTION = "function"
    TEMPLATE = "template"
    LOOKUP = "lookup"
    DIRECT = "direct"


def kind_of(mapping: FieldMapping) -> TransformKind:
    if mapping.function:
        return TransformKind.CUSTOM_FUNCTION
    if mapping.template:
        return TransformKind.TEMPLATE
    if mapping.lookup is not None:
        return TransformKind.LOOKUP
    return TransformKind.DIRECT


class TransformerEngine:
    """Derive target field values from a JPD issue.

    Custom functions are an injected registry (name -> callable taking
    `{"key", "fields", "value"}`, where `value` is the mapping's resolved
    source); nothing is imported from config-supplied paths.
    """

    def __init__(self, functions: Optional[Mapping[str, TransformFunction]] = None):
        self.functions: Dict[str, TransformFunction] = dict(BUILTIN_FUNCTIONS)
        if functions:
            self.functions.update(functions)

    def check_mappings(self, mappings) -> None:
        """Fail fast on function names that are not registered."""
        for mapping in mappings:
            if mapping.function and mapping.function not in self.functions:
                raise ConfigurationError(
                    f"Mapping for '{mapping.target}' uses unknown transform function "
                    f"'{mapping.function}' (registered: {', '.join(sorted(self.functions))})"
                )

    def transform(self, mapping: FieldMapping, issue: SourceIssue) -> Any:
        return self.apply(kind_of(mapping), mapping, issue.as_template_data())

    def apply(self, kind: TransformKind, mapping: FieldMapping, data: Dict[str, Any]) -> Any:
        if kind is TransformKind.CUSTOM_FUNCTION:
            fn = self.functions.get(mapping.function or "")
            if fn is None:
                raise ConfigurationError(f"Unknown transform function '{mapping.function}'")
            return fn({**data, "value": self._source_value(mapping, data)})

        if kind is TransformKind.TEMPLATE:
            return TemplateParser.parse(mapping.template or "", data)

        if kind is TransformKind.LOOKUP:
            raw = unwrap_value(self._source_value(mapping, data))
            table = mapping.lookup or {}
            if isinstance(raw, list):
                return [table.get(str(v), v) for v in raw]
            if raw is None:
                return None
            return table.get(str(raw), raw)

        value = self._source_value(mapping, data)
        if isinstance(mapping.source, list):
            return value
        return unwrap_value(value)

    @staticmethod
    def _source_value(mapping: FieldMapping, data: Dict[str, Any]) -> Any:
        if isinstance(mapping.source, list):
            return {path: get_path(data, path) for path in mapping.source}
        return get_path(data, mapping.source)

    def build_payload(self, mappings, issue: SourceIssue) -> Dict[str, Any]:
        """Apply every mapping; `labels` accumulates, other targets overwrite."""
        payload: Dict[str, Any] = {"labels": []}
        for mapping in mappings:
            value = self.transform(mapping, issue)
            if value is None:
                continue
            if mapping.target == "labels":
                values = value if isinstance(value, list) else [value]
                payload["labels"].extend(str(v) for v in values if v not in (None, ""))
            else:
                payload[mapping.target] = value
        return payload
