"""Feed 订阅源模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from transfront.utils.formatting import utcnow


class Feed(SQLModel, table=True):
    """RSS 订阅源及其匹配规则."""

    __tablename__ = "feeds"  # type: ignore[assignment]
    # 删除后 id 不复用
    __table_args__ = {"sqlite_autoincrement": True}

    id: int | None = Field(default=None, primary_key=True)
    url: str = Field(description="Feed URL")
    pattern: str = Field(default=".*", description="标题正则（忽略大小写）")
    min_size: int = Field(default=0, ge=0, description="最小字节数")
    max_size: int | None = Field(default=None, description="最大字节数，空表示不限")
    category: str = Field(default="", description="分类标签（仅展示）")
    created_at: datetime = Field(default_factory=utcnow)
    last_poll_at: datetime | None = Field(default=None, description="最近轮询时间")
    matched_count: int = Field(default=0, description="累计成功添加数")
