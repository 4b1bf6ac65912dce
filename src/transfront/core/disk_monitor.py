"""磁盘空间监控 - 空间不足时自动清理最早完成的种子."""

import asyncio
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transfront.core.ownership import OwnershipLedger, acquisition_time
from transfront.core.transmission import TorrentInfo, TransmissionService
from transfront.errors import EngineError
from transfront.utils.formatting import format_bytes

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_DIR = "/downloads"


@dataclass
class DiskUsage:
    """磁盘使用情况（即时计算，不持久化）."""

    path: str
    total: int
    used: int
    free: int
    estimated: bool = False  # 无法测量时的占位数据

    @property
    def free_percent(self) -> float:
        return self.free / self.total * 100 if self.total else 0.0


def get_disk_usage(path: str) -> DiskUsage:
    """测量路径所在文件系统的使用情况，失败时返回占位数据."""
    try:
        usage = shutil.disk_usage(path)
    except OSError as e:
        logger.error(f"获取磁盘使用情况失败 {path}: {e}")
        return DiskUsage(
            path=path,
            total=1_000_000_000_000,
            used=900_000_000_000,
            free=100_000_000_000,
            estimated=True,
        )
    return DiskUsage(path=path, total=usage.total, used=usage.used, free=usage.free)


class EvictionStatus:
    """清理结果状态."""

    OK = "ok"  # 空间充足
    RECOVERED = "recovered"  # 清理后恢复
    STILL_LOW = "still-low"  # 候选用尽仍不足
    NO_CANDIDATES = "no-candidates"  # 空间不足但没有可清理的种子
    SKIPPED = "skipped"  # 无法测量


@dataclass
class RemovedTorrent:
    """被清理的种子."""

    id: int
    name: str
    size: int
    hash_string: str


@dataclass
class EvictionReport:
    """一次检查的结果."""

    status: str
    threshold_percent: float
    free_percent_before: float
    free_percent_after: float
    message: str
    removed: list[RemovedTorrent] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return len(self.removed)


@dataclass
class EvictionCandidate:
    """清理候选."""

    torrent: TorrentInfo
    added_at: datetime | None


class DiskMonitor:
    """
    磁盘空间监控.

    候选为已完成且未设置禁止自动清理的种子（没有归属记录的种子同样可清理），
    按添加时间从早到晚逐个删除，每删除一个重新测量，空间恢复即停止。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: TransmissionService,
        threshold_percent: float = 10.0,
        usage_probe: Callable[[str], DiskUsage] = get_disk_usage,
    ) -> None:
        self.session_factory = session_factory
        self.engine = engine
        self.threshold_percent = threshold_percent
        self._usage_probe = usage_probe
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def download_dir(self) -> str:
        """Transmission 配置的下载目录."""
        session = await self.engine.session()
        return session.get("download-dir") or DEFAULT_DOWNLOAD_DIR

    async def measure(self, path: str) -> DiskUsage:
        """测量磁盘使用情况."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._usage_probe, path)

    async def candidates(self) -> list[EvictionCandidate]:
        """获取可自动清理的种子，最早添加的在前."""
        torrents = await self.engine.list_torrents()
        async with self.session_factory() as session:
            records = await OwnershipLedger(session).all()

        candidates = [
            EvictionCandidate(
                torrent=torrent,
                added_at=acquisition_time(records.get(torrent.hash_string)),
            )
            for torrent in torrents
            if torrent.is_complete
            and not (
                torrent.hash_string in records
                and records[torrent.hash_string].block_auto_remove
            )
        ]
        # 没有添加时间的视为最早，优先清理
        candidates.sort(key=lambda c: (c.added_at or datetime.min, c.torrent.id))
        return candidates

    async def check(self) -> EvictionReport:
        """检查磁盘空间，不足时清理."""
        async with self._lock:
            return await self._check()

    async def _check(self) -> EvictionReport:
        download_dir = await self.download_dir()
        usage = await self.measure(download_dir)

        if usage.estimated:
            logger.warning(f"无法测量 {download_dir} 的磁盘空间，跳过本次清理")
            return self._report(EvictionStatus.SKIPPED, usage, usage, "无法测量磁盘空间")

        logger.info(f"磁盘使用情况: {usage.free_percent:.2f}% 可用")
        if usage.free_percent >= self.threshold_percent:
            return self._report(EvictionStatus.OK, usage, usage, "磁盘空间高于阈值")

        logger.warning(
            f"磁盘可用空间低于 {self.threshold_percent}% 阈值！开始自动清理..."
        )
        candidates = await self.candidates()
        if not candidates:
            logger.error("磁盘空间不足，但没有可自动清理的种子！需要人工处理")
            return self._report(
                EvictionStatus.NO_CANDIDATES, usage, usage, "没有可清理的种子"
            )

        removed: list[RemovedTorrent] = []
        current = usage
        for candidate in candidates:
            torrent = candidate.torrent
            try:
                await self.engine.remove(torrent.id, delete_files=True)
            except EngineError as e:
                logger.error(f"清理种子 {torrent.id} ({torrent.name}) 失败: {e}")
                continue

            async with self.session_factory() as session:
                await OwnershipLedger(session).delete(torrent.hash_string)
                await session.commit()

            removed.append(
                RemovedTorrent(
                    id=torrent.id,
                    name=torrent.name,
                    size=torrent.total_size,
                    hash_string=torrent.hash_string,
                )
            )
            logger.info(f"已清理: {torrent.name} ({format_bytes(torrent.total_size)})")

            current = await self.measure(download_dir)
            if current.free_percent >= self.threshold_percent:
                logger.info(f"磁盘空间已恢复: {current.free_percent:.2f}% 可用")
                break

        status = (
            EvictionStatus.RECOVERED
            if current.free_percent >= self.threshold_percent
            else EvictionStatus.STILL_LOW
        )
        if status == EvictionStatus.STILL_LOW:
            logger.error(
                f"候选种子已用尽，磁盘可用空间仍只有 {current.free_percent:.2f}%"
            )
        return self._report(
            status, usage, current, f"已清理 {len(removed)} 个种子", removed
        )

    def _report(
        self,
        status: str,
        before: DiskUsage,
        after: DiskUsage,
        message: str,
        removed: list[RemovedTorrent] | None = None,
    ) -> EvictionReport:
        return EvictionReport(
            status=status,
            threshold_percent=self.threshold_percent,
            free_percent_before=before.free_percent,
            free_percent_after=after.free_percent,
            message=message,
            removed=removed or [],
        )
