"""SeenItem 去重记录模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from transfront.utils.formatting import utcnow


class SeenItem(SQLModel, table=True):
    """已处理过的 Feed 条目（写入后永久保留）."""

    __tablename__ = "seen_items"  # type: ignore[assignment]

    fingerprint: str = Field(primary_key=True, description="条目指纹")
    # 不设外键：删除 Feed 不会让条目重新变为未处理
    feed_id: int = Field(index=True, description="首次发现该条目的 Feed")
    seen_at: datetime = Field(default_factory=utcnow)
