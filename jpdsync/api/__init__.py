"""API routes"""

from jpdsync.api import sync

__all__ = ["sync"]
