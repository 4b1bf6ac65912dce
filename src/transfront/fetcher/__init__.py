"""RSS 抓取与匹配模块."""

from transfront.fetcher.feed_fetcher import Enclosure, FeedFetcher, FeedItem
from transfront.fetcher.matcher import (
    MatchResult,
    MatchRule,
    RuleMatcher,
    fingerprint,
    validate_rule,
)

__all__ = [
    "Enclosure",
    "FeedFetcher",
    "FeedItem",
    "MatchResult",
    "MatchRule",
    "RuleMatcher",
    "fingerprint",
    "validate_rule",
]
