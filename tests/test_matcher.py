"""测试规则匹配、指纹和规则校验."""

from datetime import datetime

import pytest

from transfront.errors import ValidationError
from transfront.fetcher.feed_fetcher import Enclosure, FeedItem
from transfront.fetcher.matcher import MatchRule, RuleMatcher, fingerprint, validate_rule


@pytest.fixture
def matcher() -> RuleMatcher:
    return RuleMatcher()


class TestFingerprint:
    """测试条目指纹."""

    def test_guid_first(self) -> None:
        """有 guid 时只看 guid."""
        a = FeedItem(title="A", link="https://x/1", guid="guid-1")
        b = FeedItem(title="B", link="https://x/2", guid="guid-1")
        assert fingerprint(a) == fingerprint(b)

    def test_fallback_to_link(self) -> None:
        """没有 guid 时使用 link."""
        a = FeedItem(title="A", link="https://x/1")
        b = FeedItem(title="B", link="https://x/1")
        c = FeedItem(title="A", link="https://x/2")
        assert fingerprint(a) == fingerprint(b)
        assert fingerprint(a) != fingerprint(c)

    def test_fallback_to_title(self) -> None:
        """guid 和 link 都没有时使用标题."""
        assert fingerprint(FeedItem(title="Only")) == fingerprint(FeedItem(title="Only"))
        assert fingerprint(FeedItem(title="Only")) != fingerprint(FeedItem(title="Other"))

    def test_ignores_mutable_fields(self) -> None:
        """发布时间和描述变化不影响指纹."""
        a = FeedItem(title="A", guid="g", description="v1", published_at=datetime(2024, 1, 1))
        b = FeedItem(title="A", guid="g", description="v2", published_at=datetime(2025, 6, 1))
        assert fingerprint(a) == fingerprint(b)


class TestMatching:
    """测试匹配顺序和不匹配原因."""

    def test_pattern_mismatch(self, matcher: RuleMatcher) -> None:
        """标题不匹配时原因为 pattern，即使没有下载地址."""
        item = FeedItem(title="Show.S01E04.mkv")
        result = matcher.matches(item, MatchRule(pattern="S01E0[1-3]"))
        assert not result.matched
        assert result.reason == "pattern"

    def test_pattern_case_insensitive(self, matcher: RuleMatcher) -> None:
        item = FeedItem(title="show.s01e01.mkv", link="https://x/a.torrent")
        result = matcher.matches(item, MatchRule(pattern="S01E01"))
        assert result.matched

    def test_no_link(self, matcher: RuleMatcher) -> None:
        """找不到下载地址时原因为 no-link."""
        item = FeedItem(title="Show.S01E01", link="https://x/details/1")
        result = matcher.matches(item, MatchRule())
        assert not result.matched
        assert result.reason == "no-link"

    def test_size_out_of_range(self, matcher: RuleMatcher) -> None:
        item = FeedItem(
            title="Show",
            enclosures=[Enclosure(url="https://x/1.torrent", length=50)],
        )
        result = matcher.matches(item, MatchRule(min_size=100, max_size=1000))
        assert not result.matched
        assert result.reason == "size"

        item.enclosures[0].length = 1001
        assert matcher.matches(item, MatchRule(min_size=100, max_size=1000)).reason == "size"

    def test_size_bounds_inclusive(self, matcher: RuleMatcher) -> None:
        rule = MatchRule(min_size=100, max_size=1000)
        for size in (100, 1000):
            item = FeedItem(
                title="Show",
                enclosures=[Enclosure(url="https://x/1.torrent", length=size)],
            )
            assert matcher.matches(item, rule).matched

    def test_unknown_size_passes(self, matcher: RuleMatcher) -> None:
        """没有声明大小时跳过大小检查."""
        item = FeedItem(title="Show", link="https://x/1.torrent")
        result = matcher.matches(item, MatchRule(min_size=100, max_size=1000))
        assert result.matched
        assert result.download_url == "https://x/1.torrent"

    def test_invalid_rule_becomes_error(self, matcher: RuleMatcher) -> None:
        """绕过校验的坏规则不会抛出异常."""
        item = FeedItem(title="Show", link="https://x/1.torrent")
        result = matcher.matches(item, MatchRule(pattern="(unclosed"))
        assert not result.matched
        assert result.reason == "error"
        assert result.error


class TestDownloadUrl:
    """测试下载地址的优先级."""

    def test_enclosure_by_mime(self, matcher: RuleMatcher) -> None:
        item = FeedItem(
            title="A",
            link="https://x/a.torrent",
            enclosures=[
                Enclosure(url="https://x/cover.jpg", type="image/jpeg"),
                Enclosure(
                    url="https://x/get?id=1",
                    type="application/x-bittorrent",
                    length=123,
                ),
            ],
        )
        assert matcher.find_download_url(item) == ("https://x/get?id=1", 123)

    def test_enclosure_by_suffix(self, matcher: RuleMatcher) -> None:
        item = FeedItem(title="A", enclosures=[Enclosure(url="https://x/b.torrent")])
        assert matcher.find_download_url(item) == ("https://x/b.torrent", None)

    def test_link_torrent_suffix(self, matcher: RuleMatcher) -> None:
        item = FeedItem(title="A", link="https://x/c.torrent")
        assert matcher.find_download_url(item) == ("https://x/c.torrent", None)

    @pytest.mark.parametrize(
        "link",
        [
            "https://tracker/download/123",
            "https://tracker/index.php?action=download&id=1",
            "https://tracker/dl/abc",
            "https://tracker/download.php?id=9",
            "https://tracker/rss_dl.php?id=9",
        ],
    )
    def test_link_download_markers(self, matcher: RuleMatcher, link: str) -> None:
        item = FeedItem(title="A", link=link)
        assert matcher.find_download_url(item) == (link, None)

    def test_nothing_found(self, matcher: RuleMatcher) -> None:
        item = FeedItem(title="A", link="https://x/page.html")
        assert matcher.find_download_url(item) == (None, None)


class TestValidateRule:
    """测试写入前的规则校验."""

    def test_default_rule_valid(self) -> None:
        validate_rule(MatchRule())

    def test_pattern_too_long(self) -> None:
        with pytest.raises(ValidationError):
            validate_rule(MatchRule(pattern="a" * 201))

    def test_pattern_at_limit(self) -> None:
        validate_rule(MatchRule(pattern="a" * 200))

    def test_invalid_regex(self) -> None:
        with pytest.raises(ValidationError):
            validate_rule(MatchRule(pattern="[unclosed"))

    def test_nested_quantifier_accepted_deterministically(self) -> None:
        """长度受限且能编译的正则在写入时就确定接受."""
        for _ in range(3):
            validate_rule(MatchRule(pattern="(a+)+$"))

    def test_negative_min_size(self) -> None:
        with pytest.raises(ValidationError):
            validate_rule(MatchRule(min_size=-1))

    def test_max_below_min(self) -> None:
        with pytest.raises(ValidationError):
            validate_rule(MatchRule(min_size=100, max_size=99))

    def test_category_too_long(self) -> None:
        with pytest.raises(ValidationError):
            validate_rule(MatchRule(category="x" * 101))
