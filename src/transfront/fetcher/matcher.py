"""Feed 条目规则匹配."""

import hashlib
import re
from typing import ClassVar

from pydantic import BaseModel

from transfront.errors import ValidationError
from transfront.fetcher.feed_fetcher import FeedItem
from transfront.models.feed import Feed

DEFAULT_PATTERN = ".*"
DEFAULT_PATTERN_MAX_LENGTH = 200
CATEGORY_MAX_LENGTH = 100


class MatchRule(BaseModel):
    """Feed 的匹配规则."""

    pattern: str = DEFAULT_PATTERN
    min_size: int = 0
    max_size: int | None = None  # None 表示不限
    category: str = ""

    @classmethod
    def from_feed(cls, feed: Feed) -> "MatchRule":
        """从 Feed 记录构造规则."""
        return cls(
            pattern=feed.pattern,
            min_size=feed.min_size,
            max_size=feed.max_size,
            category=feed.category,
        )


class MatchResult(BaseModel):
    """匹配结果."""

    matched: bool
    download_url: str | None = None
    reason: str | None = None  # pattern | no-link | size | error
    error: str | None = None


def fingerprint(item: FeedItem) -> str:
    """
    计算条目指纹.

    只取决于 guid，其次 link，最后 title，与发布时间、描述等字段无关。
    """
    identity = item.guid or item.link or item.title
    return hashlib.md5(identity.encode("utf-8")).hexdigest()


def validate_rule(
    rule: MatchRule,
    max_pattern_length: int = DEFAULT_PATTERN_MAX_LENGTH,
) -> None:
    """
    写入前校验规则.

    正则有长度上限且必须能编译，匹配阶段不再出现编译失败。
    """
    if len(rule.pattern) > max_pattern_length:
        msg = f"正则过长（最多 {max_pattern_length} 个字符）"
        raise ValidationError(msg)

    try:
        re.compile(rule.pattern, re.IGNORECASE)
    except re.error as e:
        msg = f"无效的正则表达式: {e}"
        raise ValidationError(msg) from e

    if rule.min_size < 0:
        msg = "最小大小不能为负数"
        raise ValidationError(msg)
    if rule.max_size is not None:
        if rule.max_size <= 0:
            msg = "最大大小必须为正数"
            raise ValidationError(msg)
        if rule.max_size < rule.min_size:
            msg = "最大大小不能小于最小大小"
            raise ValidationError(msg)

    if len(rule.category) > CATEGORY_MAX_LENGTH:
        msg = f"分类过长（最多 {CATEGORY_MAX_LENGTH} 个字符）"
        raise ValidationError(msg)


class RuleMatcher:
    """判断条目是否满足规则，并找出种子下载地址."""

    TORRENT_MIME = "application/x-bittorrent"
    TORRENT_SUFFIX = ".torrent"

    # 私有站点常见的下载地址特征
    DOWNLOAD_MARKERS: ClassVar[list[str]] = [
        "/download/",
        "action=download",
        "rss_dl.php",
        "/dl/",
        "download.php",
    ]

    def find_download_url(self, item: FeedItem) -> tuple[str | None, int | None]:
        """
        找出下载地址和声明大小.

        Returns:
            (下载地址, 声明的字节数)
        """
        for enclosure in item.enclosures:
            if enclosure.type == self.TORRENT_MIME or enclosure.url.endswith(
                self.TORRENT_SUFFIX
            ):
                return enclosure.url, enclosure.length

        link = item.link
        if not link:
            return None, None

        if link.endswith(self.TORRENT_SUFFIX):
            return link, None

        if any(marker in link for marker in self.DOWNLOAD_MARKERS):
            return link, None

        return None, None

    def matches(self, item: FeedItem, rule: MatchRule) -> MatchResult:
        """按 正则 -> 下载地址 -> 大小 的顺序检查，第一个失败项即为原因."""
        try:
            if not re.search(rule.pattern, item.title or "", re.IGNORECASE):
                return MatchResult(matched=False, reason="pattern")

            download_url, size = self.find_download_url(item)
            if not download_url:
                return MatchResult(matched=False, reason="no-link")

            if size is not None:
                too_small = size < rule.min_size
                too_large = rule.max_size is not None and size > rule.max_size
                if too_small or too_large:
                    return MatchResult(matched=False, reason="size")

            return MatchResult(matched=True, download_url=download_url)
        except Exception as e:
            return MatchResult(matched=False, reason="error", error=str(e))
