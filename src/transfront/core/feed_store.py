"""Feed 与去重记录存储."""

import logging
from collections.abc import Iterable
from typing import Any, ClassVar

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from transfront.errors import FeedNotFound, ValidationError
from transfront.fetcher.egress import check_scheme
from transfront.fetcher.matcher import (
    DEFAULT_PATTERN,
    DEFAULT_PATTERN_MAX_LENGTH,
    MatchRule,
    validate_rule,
)
from transfront.models.feed import Feed
from transfront.models.seen_item import SeenItem
from transfront.utils.formatting import utcnow

logger = logging.getLogger(__name__)


class FeedStore:
    """Feed 增删改查与去重记录."""

    RULE_FIELDS: ClassVar[set[str]] = {"pattern", "min_size", "max_size", "category"}

    def __init__(
        self,
        session: AsyncSession,
        max_pattern_length: int = DEFAULT_PATTERN_MAX_LENGTH,
    ) -> None:
        self.session = session
        self.max_pattern_length = max_pattern_length

    async def list_feeds(self) -> list[Feed]:
        """获取全部 Feed（按 id 排序）."""
        result = await self.session.execute(select(Feed).order_by(Feed.id))
        return list(result.scalars().all())

    async def get_feed(self, feed_id: int) -> Feed:
        """获取 Feed，不存在时抛出 FeedNotFound."""
        feed = await self.session.get(Feed, feed_id)
        if feed is None:
            msg = f"Feed 不存在: {feed_id}"
            raise FeedNotFound(msg)
        return feed

    async def add_feed(
        self,
        url: str,
        pattern: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        category: str | None = None,
    ) -> Feed:
        """新增 Feed，规则校验失败时不写入任何数据."""
        check_scheme(url)
        rule = MatchRule(
            pattern=pattern or DEFAULT_PATTERN,
            min_size=min_size or 0,
            max_size=max_size,
            category=category or "",
        )
        validate_rule(rule, self.max_pattern_length)

        feed = Feed(url=url, **rule.model_dump())
        self.session.add(feed)
        await self.session.commit()
        await self.session.refresh(feed)
        logger.info(f"新增 Feed {feed.id}: {url}")
        return feed

    async def update_feed(self, feed_id: int, changes: dict[str, Any]) -> Feed:
        """
        更新 Feed.

        Args:
            feed_id: Feed ID
            changes: 只包含需要修改的字段（url/pattern/min_size/max_size/category）

        Returns:
            更新后的 Feed
        """
        feed = await self.get_feed(feed_id)

        url = changes.get("url") or feed.url
        check_scheme(url)

        rule = MatchRule.from_feed(feed).model_copy(
            update={k: v for k, v in changes.items() if k in self.RULE_FIELDS}
        )
        if not rule.pattern:
            rule.pattern = DEFAULT_PATTERN
        if rule.min_size is None:
            msg = "最小大小不能为空"
            raise ValidationError(msg)
        rule.category = rule.category or ""
        validate_rule(rule, self.max_pattern_length)

        feed.url = url
        for key, value in rule.model_dump().items():
            setattr(feed, key, value)

        await self.session.commit()
        await self.session.refresh(feed)
        logger.info(f"更新 Feed {feed_id}")
        return feed

    async def delete_feed(self, feed_id: int) -> None:
        """删除 Feed，已记录的去重条目保留."""
        feed = await self.get_feed(feed_id)
        await self.session.delete(feed)
        await self.session.commit()
        logger.info(f"删除 Feed {feed_id}")

    async def seen_fingerprints(self, fingerprints: Iterable[str]) -> set[str]:
        """返回其中已经处理过的指纹."""
        candidates = list(set(fingerprints))
        if not candidates:
            return set()

        seen: set[str] = set()
        # SQLite 对参数个数有限制，分批查询
        for start in range(0, len(candidates), 500):
            batch = candidates[start : start + 500]
            stmt = select(SeenItem.fingerprint).where(SeenItem.fingerprint.in_(batch))
            result = await self.session.execute(stmt)
            seen.update(result.scalars().all())
        return seen

    async def mark_seen(self, fingerprints: Iterable[str], feed_id: int) -> None:
        """
        标记条目已处理（随本次轮询一起提交）.

        已存在的指纹保持原记录不变，重复写入不会让整个事务回滚。
        """
        now = utcnow()
        rows = [
            {"fingerprint": fp, "feed_id": feed_id, "seen_at": now}
            for fp in dict.fromkeys(fingerprints)
        ]
        # 每行 3 个参数，保持在 SQLite 的参数上限以内
        for start in range(0, len(rows), 300):
            stmt = sqlite_insert(SeenItem).values(rows[start : start + 300])
            await self.session.execute(stmt.on_conflict_do_nothing())
