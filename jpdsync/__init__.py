"""Jira Product Discovery <-> GitLab issue sync"""

__version__ = "1.0.0"
