"""种子操作 - 列表、上传、删除、统计."""

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transfront.core.disk_monitor import DiskUsage, get_disk_usage
from transfront.core.ownership import OwnershipLedger
from transfront.core.transmission import STATUS_DOWNLOADING, TransmissionService
from transfront.errors import (
    EngineError,
    PermissionDenied,
    TorrentNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)

TORRENT_SUFFIX = ".torrent"


@dataclass(frozen=True)
class UserIdentity:
    """由上游认证层提供的用户身份."""

    user_id: int
    username: str
    is_admin: bool = False


@dataclass
class UploadedFile:
    """待添加的种子文件."""

    filename: str
    content: bytes


class TorrentManager:
    """面向用户的种子操作，授权以归属记录为准."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: TransmissionService,
        upload_dir: str | Path,
        max_upload_bytes: int = 10 * 1024 * 1024,
        max_upload_files: int = 10,
        usage_probe: Callable[[str], DiskUsage] = get_disk_usage,
    ) -> None:
        self.session_factory = session_factory
        self.engine = engine
        self.upload_dir = Path(upload_dir)
        self.max_upload_bytes = max_upload_bytes
        self.max_upload_files = max_upload_files
        self._usage_probe = usage_probe

    async def list_with_ownership(self, user: UserIdentity) -> list[dict[str, Any]]:
        """获取所有种子及其归属信息."""
        torrents = await self.engine.list_torrents()
        async with self.session_factory() as session:
            records = await OwnershipLedger(session).all()

        items = []
        for torrent in torrents:
            record = records.get(torrent.hash_string)
            items.append(
                {
                    "id": torrent.id,
                    "hash_string": torrent.hash_string,
                    "name": torrent.name,
                    "status": torrent.status,
                    "status_label": torrent.status_label,
                    "percent_done": torrent.percent_done,
                    "total_size": torrent.total_size,
                    "download_dir": torrent.download_dir,
                    "rate_download": torrent.rate_download,
                    "rate_upload": torrent.rate_upload,
                    "owner": record.owner_username if record else "unknown",
                    "owner_id": record.owner_id if record else None,
                    "added_at": record.added_at.isoformat() if record else None,
                    "source": record.source if record else None,
                    "block_auto_remove": record.block_auto_remove if record else False,
                    "is_own": record is not None and record.owner_id == user.user_id,
                }
            )
        return items

    async def upload(
        self,
        user: UserIdentity,
        files: list[UploadedFile],
    ) -> list[dict[str, Any]]:
        """
        上传种子文件.

        文件校验失败时整个请求被拒绝；单个文件添加失败只记录在结果中。

        Returns:
            每个文件一条结果
        """
        self._validate_upload(files)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

        results: list[dict[str, Any]] = []
        for file in files:
            path = self.upload_dir / f"{time.time_ns()}-{Path(file.filename).name}"
            try:
                await self._write(path, file.content)
                added = await self.engine.add_by_file(path)
            except (EngineError, OSError) as e:
                logger.warning(f"上传 {file.filename} 失败: {e}")
                results.append(
                    {"success": False, "filename": file.filename, "error": str(e)}
                )
                continue
            finally:
                path.unlink(missing_ok=True)

            async with self.session_factory() as session:
                await OwnershipLedger(session).record_upload(
                    added.hash_string, user.user_id, user.username
                )
                await session.commit()

            logger.info(f"用户 {user.username} 上传了 {added.name}")
            results.append(
                {
                    "success": True,
                    "filename": file.filename,
                    "torrent_id": added.id,
                    "name": added.name,
                }
            )
        return results

    def _validate_upload(self, files: list[UploadedFile]) -> None:
        if not files:
            msg = "没有上传种子文件"
            raise ValidationError(msg)
        if len(files) > self.max_upload_files:
            msg = f"一次最多上传 {self.max_upload_files} 个文件"
            raise ValidationError(msg)
        for file in files:
            if Path(file.filename).suffix.lower() != TORRENT_SUFFIX:
                msg = f"只允许上传 .torrent 文件: {file.filename}"
                raise ValidationError(msg)
            if len(file.content) > self.max_upload_bytes:
                msg = f"文件过大: {file.filename}"
                raise ValidationError(msg)

    async def _write(self, path: Path, content: bytes) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, path.write_bytes, content)

    async def _hash_of(self, torrent_id: int) -> str | None:
        try:
            torrent = await self.engine.get_torrent(torrent_id)
        except TorrentNotFound:
            logger.info(f"未找到种子 {torrent_id}")
            return None
        return torrent.hash_string

    async def delete(self, user: UserIdentity, torrent_id: int) -> dict[str, Any]:
        """删除种子及其数据，只有所有者或管理员可以删除."""
        hash_string = await self._hash_of(torrent_id)
        if hash_string is None and not user.is_admin:
            msg = f"种子不存在: {torrent_id}"
            raise TorrentNotFound(msg)

        async with self.session_factory() as session:
            ledger = OwnershipLedger(session)
            if not await ledger.can_modify(hash_string, user.user_id, user.is_admin):
                msg = "只能删除自己的种子"
                raise PermissionDenied(msg)

            logger.info(
                f"删除请求: torrent={torrent_id}, hash={hash_string}, "
                f"user={user.user_id}, admin={user.is_admin}"
            )
            result = await self.engine.remove(torrent_id, delete_files=True)

            if hash_string:
                await ledger.delete(hash_string)
                await session.commit()

        return {
            "success": True,
            "torrent_id": torrent_id,
            "workaround_used": result.workaround_used,
        }

    async def set_block_auto_remove(
        self,
        user: UserIdentity,
        torrent_id: int,
        block: bool,
    ) -> dict[str, Any]:
        """设置是否禁止自动清理."""
        torrent = await self.engine.get_torrent(torrent_id)

        async with self.session_factory() as session:
            ledger = OwnershipLedger(session)
            if not await ledger.can_modify(
                torrent.hash_string, user.user_id, user.is_admin
            ):
                msg = "只能修改自己的种子"
                raise PermissionDenied(msg)
            await ledger.set_block_auto_remove(torrent.hash_string, block)
            await session.commit()

        return {"success": True, "torrent_id": torrent_id, "block_auto_remove": block}

    async def stats(self) -> dict[str, Any]:
        """汇总统计."""
        torrents, session_stats = await asyncio.gather(
            self.engine.list_torrents(),
            self.engine.session_stats(),
        )
        async with self.session_factory() as session:
            records = await OwnershipLedger(session).all()

        owner_counts = Counter(
            records[t.hash_string].owner_username
            if t.hash_string in records
            else "unknown"
            for t in torrents
        )
        cumulative = session_stats.get("cumulative-stats") or {}

        return {
            "total_torrents": len(torrents),
            "active_torrents": sum(1 for t in torrents if t.status == STATUS_DOWNLOADING),
            "completed_torrents": sum(1 for t in torrents if t.is_complete),
            "total_downloaded": cumulative.get("downloadedBytes", 0),
            "total_uploaded": cumulative.get("uploadedBytes", 0),
            "download_speed": session_stats.get("downloadSpeed", 0),
            "upload_speed": session_stats.get("uploadSpeed", 0),
            "owner_counts": dict(owner_counts),
        }

    async def disk_usage(self) -> dict[str, Any]:
        """下载目录和未完成目录的磁盘使用情况，无法测量时为 None."""
        session = await self.engine.session()
        paths = {"downloads": session.get("download-dir")}
        if session.get("incomplete-dir-enabled"):
            paths["incomplete"] = session.get("incomplete-dir")

        loop = asyncio.get_running_loop()
        report: dict[str, Any] = {"downloads": None, "incomplete": None}
        for key, path in paths.items():
            if not path:
                continue
            usage = await loop.run_in_executor(None, self._usage_probe, path)
            if usage.estimated:
                continue
            report[key] = {
                "path": path,
                "total": usage.total,
                "used": usage.used,
                "available": usage.free,
                "free_percent": round(usage.free_percent, 2),
            }
        return report
