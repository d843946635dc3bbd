# Database models
from notion_mirror.models.checkpoint import SyncCheckpoint
from notion_mirror.models.sync_log import SyncLog

__all__ = [
    "SyncCheckpoint",
    "SyncLog",
]
