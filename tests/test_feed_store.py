"""测试 Feed 存储与去重记录."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from transfront.core.feed_store import FeedStore
from transfront.errors import FeedNotFound, ValidationError
from transfront.models.feed import Feed
from transfront.models.seen_item import SeenItem


@pytest.fixture
def store(async_session: AsyncSession) -> FeedStore:
    return FeedStore(async_session)


async def _feed_count(session: AsyncSession) -> int:
    result = await session.execute(select(Feed))
    return len(result.scalars().all())


class TestAddFeed:
    """测试新增 Feed."""

    async def test_defaults(self, store: FeedStore) -> None:
        feed = await store.add_feed("https://tracker.example.com/rss")
        assert feed.id is not None
        assert feed.pattern == ".*"
        assert feed.min_size == 0
        assert feed.max_size is None
        assert feed.category == ""
        assert feed.matched_count == 0
        assert feed.last_poll_at is None

    async def test_rule_fields(self, store: FeedStore) -> None:
        feed = await store.add_feed(
            "https://tracker.example.com/rss",
            pattern="S01E0[1-3]",
            min_size=100,
            max_size=2000,
            category="TV",
        )
        assert (feed.pattern, feed.min_size, feed.max_size, feed.category) == (
            "S01E0[1-3]",
            100,
            2000,
            "TV",
        )

    @pytest.mark.parametrize(
        ("url", "kwargs"),
        [
            ("ftp://tracker.example.com/rss", {}),
            ("not a url", {}),
            ("https://tracker.example.com/rss", {"pattern": "[bad"}),
            ("https://tracker.example.com/rss", {"pattern": "a" * 201}),
            ("https://tracker.example.com/rss", {"min_size": 10, "max_size": 5}),
            ("https://tracker.example.com/rss", {"category": "c" * 101}),
        ],
    )
    async def test_invalid_input_writes_nothing(
        self,
        store: FeedStore,
        async_session: AsyncSession,
        url: str,
        kwargs: dict,
    ) -> None:
        with pytest.raises(ValidationError):
            await store.add_feed(url, **kwargs)
        assert await _feed_count(async_session) == 0

    async def test_catastrophic_pattern_accepted(self, store: FeedStore) -> None:
        feed = await store.add_feed("https://tracker.example.com/rss", pattern="(a+)+$")
        assert feed.pattern == "(a+)+$"

    async def test_ids_not_reused(self, store: FeedStore) -> None:
        """删除后新 Feed 的 id 仍然递增."""
        first = await store.add_feed("https://a.example.com/rss")
        second = await store.add_feed("https://b.example.com/rss")
        await store.delete_feed(second.id)
        third = await store.add_feed("https://c.example.com/rss")
        assert first.id < second.id < third.id


class TestUpdateFeed:
    """测试修改 Feed."""

    async def test_partial_update(self, store: FeedStore) -> None:
        feed = await store.add_feed(
            "https://tracker.example.com/rss", pattern="old", min_size=10
        )
        updated = await store.update_feed(feed.id, {"pattern": "new"})
        assert updated.pattern == "new"
        assert updated.min_size == 10
        assert updated.url == "https://tracker.example.com/rss"

    async def test_clear_max_size(self, store: FeedStore) -> None:
        feed = await store.add_feed("https://tracker.example.com/rss", max_size=100)
        updated = await store.update_feed(feed.id, {"max_size": None})
        assert updated.max_size is None

    async def test_invalid_update_keeps_old_values(
        self, store: FeedStore, async_session: AsyncSession
    ) -> None:
        feed = await store.add_feed("https://tracker.example.com/rss", pattern="ok")
        with pytest.raises(ValidationError):
            await store.update_feed(feed.id, {"pattern": "(", "category": "x"})

        await async_session.refresh(feed)
        assert feed.pattern == "ok"
        assert feed.category == ""

    async def test_update_missing_feed(self, store: FeedStore) -> None:
        with pytest.raises(FeedNotFound):
            await store.update_feed(999, {"pattern": "x"})


class TestSeenLedger:
    """测试去重记录."""

    async def test_mark_and_query(
        self, store: FeedStore, async_session: AsyncSession
    ) -> None:
        await store.mark_seen(["fp-1", "fp-2"], 1)
        await async_session.commit()

        seen = await store.seen_fingerprints(["fp-1", "fp-2", "fp-3"])
        assert seen == {"fp-1", "fp-2"}

    async def test_delete_feed_keeps_seen_items(
        self, store: FeedStore, async_session: AsyncSession
    ) -> None:
        feed = await store.add_feed("https://tracker.example.com/rss")
        await store.mark_seen(["fp-1"], feed.id)
        await async_session.commit()

        await store.delete_feed(feed.id)

        result = await async_session.execute(select(SeenItem))
        assert [item.fingerprint for item in result.scalars().all()] == ["fp-1"]

    async def test_large_batch(
        self, store: FeedStore, async_session: AsyncSession
    ) -> None:
        await store.mark_seen((f"fp-{i}" for i in range(1200)), 1)
        await async_session.commit()

        seen = await store.seen_fingerprints(f"fp-{i}" for i in range(0, 2400, 2))
        assert len(seen) == 600

    async def test_mark_seen_keeps_first_record(
        self, store: FeedStore, async_session: AsyncSession
    ) -> None:
        """重复标记不报错，保留首次发现的 Feed."""
        await store.mark_seen(["fp-1"], 1)
        await async_session.commit()

        await store.mark_seen(["fp-1", "fp-2", "fp-2"], 2)
        await async_session.commit()

        result = await async_session.execute(select(SeenItem))
        owners = {item.fingerprint: item.feed_id for item in result.scalars().all()}
        assert owners == {"fp-1": 1, "fp-2": 2}
