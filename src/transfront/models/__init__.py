"""数据模型."""

from transfront.models.database import close_db, init_db
from transfront.models.feed import Feed
from transfront.models.ownership import (
    SOURCE_RSS,
    SOURCE_UPLOAD,
    SYSTEM_USER_ID,
    SYSTEM_USERNAME,
    TorrentOwnership,
)
from transfront.models.seen_item import SeenItem

__all__ = [
    "SOURCE_RSS",
    "SOURCE_UPLOAD",
    "SYSTEM_USERNAME",
    "SYSTEM_USER_ID",
    "Feed",
    "SeenItem",
    "TorrentOwnership",
    "close_db",
    "init_db",
]
