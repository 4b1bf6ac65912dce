"""核心业务逻辑."""

from transfront.core.disk_monitor import DiskMonitor, DiskUsage, EvictionReport
from transfront.core.feed_store import FeedStore
from transfront.core.ownership import OwnershipLedger
from transfront.core.poller import FeedPoller, FeedPollResult, PollOutcome
from transfront.core.restart import EngineRestarter
from transfront.core.torrents import TorrentManager, UserIdentity
from transfront.core.transmission import TransmissionConfig, TransmissionService

__all__ = [
    "DiskMonitor",
    "DiskUsage",
    "EngineRestarter",
    "EvictionReport",
    "FeedPollResult",
    "FeedPoller",
    "FeedStore",
    "OwnershipLedger",
    "PollOutcome",
    "TorrentManager",
    "TransmissionConfig",
    "TransmissionService",
    "UserIdentity",
]
