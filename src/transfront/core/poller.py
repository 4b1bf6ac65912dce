"""RSS 轮询 - 抓取、去重、匹配、添加、记录."""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transfront.core.feed_store import FeedStore
from transfront.core.ownership import OwnershipLedger
from transfront.core.transmission import TransmissionService
from transfront.errors import EngineError
from transfront.fetcher.feed_fetcher import FeedFetcher, FeedItem
from transfront.fetcher.matcher import (
    DEFAULT_PATTERN_MAX_LENGTH,
    MatchRule,
    RuleMatcher,
    fingerprint,
)
from transfront.models.feed import Feed
from transfront.utils.formatting import utcnow

logger = logging.getLogger(__name__)


class PollOutcome:
    """单个条目的处理结果."""

    ALREADY_SEEN = "already-seen"
    NO_MATCH = "no-match"
    ALREADY_EXISTS = "already-exists"
    ADDED = "added"
    FAILED_TO_ADD = "failed-to-add"


@dataclass
class PollItemResult:
    """单个条目的处理记录."""

    title: str
    outcome: str
    reason: str | None = None  # 不匹配原因
    torrent_id: int | None = None
    error: str | None = None


@dataclass
class FeedPollResult:
    """单个 Feed 一次轮询的结果."""

    feed_id: int
    already_seen: int = 0
    no_match: int = 0
    already_exists: int = 0
    added: int = 0
    failed_to_add: int = 0
    items: list[PollItemResult] = field(default_factory=list)
    error: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def record(self, item: PollItemResult) -> None:
        """记录条目结果并累加对应计数."""
        counter = item.outcome.replace("-", "_")
        setattr(self, counter, getattr(self, counter) + 1)
        # 已处理过的条目不逐条列出
        if item.outcome != PollOutcome.ALREADY_SEEN:
            self.items.append(item)

    def summary(self) -> str:
        return (
            f"{self.already_seen} 个已处理, {self.no_match} 个不匹配, "
            f"{self.already_exists} 个已存在, {self.added} 个新添加, "
            f"{self.failed_to_add} 个添加失败"
        )


class FeedPoller:
    """
    Feed 轮询器.

    同一个 Feed 的轮询通过独立的锁串行执行（定时任务与手动触发可能重叠），
    不同 Feed 之间互不影响。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: TransmissionService,
        fetcher: FeedFetcher,
        matcher: RuleMatcher | None = None,
        max_pattern_length: int = DEFAULT_PATTERN_MAX_LENGTH,
    ) -> None:
        self.session_factory = session_factory
        self.engine = engine
        self.fetcher = fetcher
        self.matcher = matcher or RuleMatcher()
        self.max_pattern_length = max_pattern_length
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._polling_all = False
        # 正在处理中的条目指纹，跨 Feed 共享
        self._claimed: set[str] = set()

    @property
    def is_polling_all(self) -> bool:
        return self._polling_all

    async def poll_feed(self, feed_id: int) -> FeedPollResult:
        """
        轮询单个 Feed.

        抓取或读取种子列表失败时直接抛出，本次不写入任何状态。
        """
        async with self._locks[feed_id]:
            async with self.session_factory() as session:
                return await self._poll(session, feed_id)

    def _claim(self, fingerprints: list[str]) -> set[str]:
        """认领尚未被其他轮询占用的指纹."""
        claimed = set(fingerprints) - self._claimed
        self._claimed |= claimed
        return claimed

    async def _poll(self, session: AsyncSession, feed_id: int) -> FeedPollResult:
        store = FeedStore(session, self.max_pattern_length)
        feed = await store.get_feed(feed_id)

        items = list(await self.fetcher.fetch(feed.url))
        logger.info(f"Feed {feed_id}: 从 RSS 解析出 {len(items)} 个条目")

        # 已存在的种子名称，避免重新添加已被删除/清理但仍在 Feed 中的条目
        existing_names = {t.name for t in await self.engine.list_torrents()}

        fingerprints = [fingerprint(item) for item in items]
        # 不同 Feed 可能发布同一条目：先认领再查库，被其他轮询占用的视为已处理
        claimed = self._claim(fingerprints)
        try:
            return await self._process(
                session, feed, items, fingerprints, claimed, existing_names
            )
        finally:
            self._claimed -= claimed

    async def _process(
        self,
        session: AsyncSession,
        feed: Feed,
        items: list[FeedItem],
        fingerprints: list[str],
        claimed: set[str],
        existing_names: set[str],
    ) -> FeedPollResult:
        assert feed.id is not None
        feed_id = feed.id
        store = FeedStore(session, self.max_pattern_length)
        ledger = OwnershipLedger(session)
        result = FeedPollResult(feed_id=feed_id)

        seen = await store.seen_fingerprints(claimed)
        seen |= set(fingerprints) - claimed
        rule = MatchRule.from_feed(feed)
        marked: list[str] = []

        for item, item_fp in zip(items, fingerprints, strict=True):
            if item_fp in seen:
                result.record(
                    PollItemResult(title=item.title, outcome=PollOutcome.ALREADY_SEEN)
                )
                continue

            # 先标记已处理，再匹配和添加：添加最多发生一次
            marked.append(item_fp)
            seen.add(item_fp)

            match = self.matcher.matches(item, rule)
            if not match.matched:
                result.record(
                    PollItemResult(
                        title=item.title,
                        outcome=PollOutcome.NO_MATCH,
                        reason=match.reason,
                        error=match.error,
                    )
                )
                continue

            if item.title in existing_names:
                logger.info(f"跳过 \"{item.title}\" - Transmission 中已存在")
                result.record(
                    PollItemResult(title=item.title, outcome=PollOutcome.ALREADY_EXISTS)
                )
                continue

            assert match.download_url is not None
            try:
                added = await self.engine.add_by_url(match.download_url)
            except EngineError as e:
                logger.warning(f"Feed {feed_id}: 添加 \"{item.title}\" 失败: {e}")
                result.record(
                    PollItemResult(
                        title=item.title,
                        outcome=PollOutcome.FAILED_TO_ADD,
                        error=str(e),
                    )
                )
                continue

            await ledger.record_feed_match(added.hash_string, feed_id, feed.url)
            feed.matched_count += 1
            existing_names.update({item.title, added.name})
            result.record(
                PollItemResult(
                    title=item.title,
                    outcome=PollOutcome.ADDED,
                    torrent_id=added.id,
                )
            )

        # 计数、轮询时间、去重记录和归属记录一次提交
        await store.mark_seen(marked, feed_id)
        feed.last_poll_at = utcnow()
        await session.commit()

        result.completed_at = utcnow()
        logger.info(f"Feed {feed_id} 轮询汇总: {result.summary()}")
        return result

    async def poll_all(self) -> dict[int, FeedPollResult]:
        """轮询全部 Feed，单个 Feed 失败不影响其他 Feed."""
        self._polling_all = True
        try:
            async with self.session_factory() as session:
                feed_ids = [feed.id for feed in await FeedStore(session).list_feeds()]

            logger.info(f"开始轮询 {len(feed_ids)} 个 RSS Feed...")
            results: dict[int, FeedPollResult] = {}
            for feed_id in feed_ids:
                assert feed_id is not None
                try:
                    results[feed_id] = await self.poll_feed(feed_id)
                except Exception as e:
                    logger.error(f"Feed {feed_id} 轮询失败: {e}")
                    results[feed_id] = FeedPollResult(
                        feed_id=feed_id,
                        error=str(e),
                        completed_at=utcnow(),
                    )
            return results
        finally:
            self._polling_all = False
