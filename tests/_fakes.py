"""In-memory JPD and GitLab stand-ins used by the engine tests."""

import copy
from typing import Any, Dict, List, Optional

from jpdsync.errors import NotFoundError, TransitionNotAvailableError
from jpdsync.models.issues import TargetIssue
from jpdsync.services.metadata import inject_metadata, parse_metadata


def jpd_issue(key, summary, status, updated="2025-01-01T10:00:00.000+0000", **fields):
    data = {"summary": summary, "status": {"name": status}, "updated": updated}
    data.update(fields)
    return {"key": key, "fields": data}


class FakeSource:
    def __init__(self, issues=None, workflow=None):
        self.issues: Dict[str, Dict[str, Any]] = {i["key"]: copy.deepcopy(i) for i in issues or []}
        # status -> statuses reachable from it; None means every status is reachable
        self.workflow: Optional[Dict[str, List[str]]] = workflow
        self.comments: Dict[str, List[Dict[str, Any]]] = {}
        self.transitions_applied: List[tuple] = []
        self.created: List[Dict[str, Any]] = []
        self.links: List[tuple] = []
        self.search_calls: List[tuple] = []
        self._next_comment = 1000
        self._next_key = 500

    def search_issues(self, jql, fields=None, limit=50):
        self.search_calls.append((jql, fields, limit))
        issues = [copy.deepcopy(i) for i in self.issues.values()][:limit]
        return {"issues": issues, "total": len(issues)}

    def get_issue(self, key, fields=None):
        if key not in self.issues:
            raise NotFoundError(f"JPD API Error 404 on /rest/api/3/issue/{key}", status_code=404)
        return copy.deepcopy(self.issues[key])

    def get_transitions(self, key):
        current = self.issues[key]["fields"]["status"]["name"]
        if self.workflow is None:
            targets = sorted({"Backlog", "Ready", "In Progress", "In Review", "Done", "Epic Design"} - {current})
        else:
            targets = self.workflow.get(current, [])
        return [{"id": str(n), "to": {"name": name}} for n, name in enumerate(targets, start=11)]

    def transition_issue(self, key, status_name):
        available = [t["to"]["name"] for t in self.get_transitions(key)]
        if status_name not in available:
            raise TransitionNotAvailableError(key, status_name, available)
        self.issues[key]["fields"]["status"] = {"name": status_name}
        self.transitions_applied.append((key, status_name))

    def get_comments(self, key):
        return copy.deepcopy(self.comments.get(key, []))

    def add_comment(self, key, markdown):
        self._next_comment += 1
        self.comments.setdefault(key, []).append(
            {
                "id": str(self._next_comment),
                "author": {"accountId": "sync-bot", "displayName": "Sync Bot"},
                "body": markdown,
                "created": "2025-01-02T00:00:00.000+0000",
            }
        )

    def create_issue(self, payload):
        self._next_key += 1
        key = f"MTT-{self._next_key}"
        fields = dict(payload["fields"])
        fields["status"] = {"name": "Parking lot"}
        self.issues[key] = {"key": key, "fields": fields}
        self.created.append(payload)
        return key

    def create_link(self, child_key, parent_key, relation="relates to"):
        self.links.append((child_key, parent_key, relation))


class FakeTarget:
    def __init__(self):
        self.issues: Dict[int, Dict[str, Any]] = {}
        self.notes: Dict[int, List[Dict[str, Any]]] = {}
        self.writes: List[tuple] = []
        self.labels_ensured: List[str] = []
        self._next_number = 1
        self._next_note = 1

    def add_existing(self, title, body="", labels=None, state="open"):
        number = self._next_number
        self._next_number += 1
        self.issues[number] = {"title": title, "body": body, "labels": list(labels or []), "state": state}
        return number

    def _to_issue(self, number) -> TargetIssue:
        raw = self.issues[number]
        return TargetIssue(
            number=number,
            title=raw["title"],
            body=raw["body"],
            labels=list(raw["labels"]),
            state=raw["state"],
            metadata=parse_metadata(raw["body"]),
        )

    def get_all_issues(self):
        return [self._to_issue(n) for n in sorted(self.issues)]

    def get_synced_issues(self):
        return [i for i in self.get_all_issues() if i.metadata is not None]

    def get_issue_by_number(self, number):
        return self._to_issue(number) if number in self.issues else None

    def create_issue(self, title, body, labels=None, metadata=None):
        number = self.add_existing(title, inject_metadata(body, metadata) if metadata else body, labels)
        self.writes.append(("create", number))
        return number

    def update_issue(self, number, *, title=None, body=None, labels=None, state=None, metadata=None):
        raw = self.issues[number]
        if title is not None:
            raw["title"] = title
        if body is not None or metadata is not None:
            description = body if body is not None else raw["body"]
            raw["body"] = inject_metadata(description, metadata) if metadata else description
        if labels is not None:
            raw["labels"] = list(labels)
        if state is not None:
            raw["state"] = state
        self.writes.append(("update", number))

    def get_comments(self, number):
        return copy.deepcopy(self.notes.get(number, []))

    def add_comment(self, number, body, username="sync-bot"):
        self._next_note += 1
        self.notes.setdefault(number, []).append(
            {
                "id": self._next_note,
                "author": {"username": username, "name": username, "web_url": f"https://gitlab.example/{username}"},
                "body": body,
                "created_at": "2025-01-02T00:00:00Z",
            }
        )

    def ensure_labels(self, labels):
        self.labels_ensured.extend(labels)
