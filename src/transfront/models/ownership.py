"""TorrentOwnership 种子归属模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from transfront.utils.formatting import utcnow

SYSTEM_USER_ID = 0
SYSTEM_USERNAME = "system"

SOURCE_UPLOAD = "upload"
SOURCE_RSS = "rss-auto"


class TorrentOwnership(SQLModel, table=True):
    """种子归属记录，以 Transmission 的 hashString 为键."""

    __tablename__ = "torrent_ownership"  # type: ignore[assignment]

    hash_string: str = Field(primary_key=True, description="种子 info hash")
    owner_id: int = Field(index=True, description="所属用户 ID，0 为系统")
    owner_username: str = Field(description="添加时的用户名快照")
    added_at: datetime = Field(default_factory=utcnow)
    source: str = Field(default=SOURCE_UPLOAD, description="来源: upload|rss-auto")
    feed_id: int | None = Field(default=None, description="来源 Feed")
    feed_url: str | None = Field(default=None, description="来源 Feed URL")
    block_auto_remove: bool = Field(default=False, description="禁止自动清理")
