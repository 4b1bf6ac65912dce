"""Transmission RPC 客户端封装."""

import asyncio
import logging
import shutil
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, TypeVar

import transmission_rpc
from transmission_rpc.error import (
    TransmissionAuthError,
    TransmissionConnectError,
    TransmissionError,
    TransmissionTimeoutError,
)

from transfront.core.restart import EngineRestarter
from transfront.errors import (
    EngineError,
    EngineRejected,
    EngineUnreachable,
    TorrentNotFound,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transmission 数字状态码
STATUS_LABELS = {
    0: "stopped",
    1: "queued-to-check",
    2: "checking",
    3: "queued-to-download",
    4: "downloading",
    5: "queued-to-seed",
    6: "seeding",
}
STATUS_DOWNLOADING = 4


def status_label(status: int | None) -> str:
    """状态码转可读标签."""
    return STATUS_LABELS.get(status, "unknown") if status is not None else "unknown"


@dataclass
class TransmissionConfig:
    """Transmission 连接配置."""

    host: str = "localhost"
    port: int = 9091
    username: str = ""
    password: str = ""
    timeout: float = 30.0
    config_dir: str = "/var/lib/transmission-daemon/.config/transmission-daemon"


@dataclass
class TorrentInfo:
    """种子信息."""

    id: int
    hash_string: str
    name: str
    status: int | None = None
    percent_done: float = 0.0
    total_size: int = 0
    download_dir: str | None = None
    rate_download: int = 0
    rate_upload: int = 0

    @property
    def is_complete(self) -> bool:
        return self.percent_done >= 1

    @property
    def status_label(self) -> str:
        return status_label(self.status)

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> "TorrentInfo":
        """从 RPC 原始字段构造."""
        return cls(
            id=int(fields["id"]),
            hash_string=fields.get("hashString", ""),
            name=fields.get("name", ""),
            status=fields.get("status"),
            percent_done=float(fields.get("percentDone") or 0),
            total_size=int(fields.get("totalSize") or 0),
            download_dir=fields.get("downloadDir"),
            rate_download=int(fields.get("rateDownload") or 0),
            rate_upload=int(fields.get("rateUpload") or 0),
        )


@dataclass
class AddedTorrent:
    """新添加的种子."""

    id: int
    hash_string: str
    name: str


@dataclass
class RemovalResult:
    """删除结果."""

    torrent_id: int
    hash_string: str | None
    name: str | None
    workaround_used: bool = False


def _default_client_factory(config: TransmissionConfig) -> Any:
    return transmission_rpc.Client(
        host=config.host,
        port=config.port,
        username=config.username or None,
        password=config.password or None,
        timeout=config.timeout,
    )


class TransmissionService:
    """
    Transmission 客户端.

    transmission-rpc 是同步库，所有调用放到线程池执行；连接懒加载，
    连接失败或使用删除补救流程后丢弃，下次调用时自动重连。
    """

    TORRENT_FIELDS: ClassVar[list[str]] = [
        "id",
        "hashString",
        "name",
        "status",
        "percentDone",
        "totalSize",
        "downloadDir",
        "rateDownload",
        "rateUpload",
    ]

    def __init__(
        self,
        config: TransmissionConfig,
        *,
        restarter: EngineRestarter | None = None,
        settle_seconds: float = 0.5,
        client_factory: Callable[[TransmissionConfig], Any] | None = None,
    ) -> None:
        self.config = config
        self.restarter = restarter
        self.settle_seconds = settle_seconds
        self._client_factory = client_factory or _default_client_factory
        self._client: Any = None
        self._client_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=4)

    def reset_client(self) -> None:
        """丢弃当前连接（重启或修改密码后使用）."""
        with self._client_lock:
            self._client = None

    def _get_client(self) -> Any:
        with self._client_lock:
            if self._client is None:
                logger.info(
                    f"初始化 Transmission 客户端: {self.config.host}:{self.config.port}"
                )
                self._client = self._client_factory(self.config)
            return self._client

    def _invoke(self, func: Callable[[Any], T]) -> T:
        try:
            return func(self._get_client())
        except (
            TransmissionConnectError,
            TransmissionTimeoutError,
            TransmissionAuthError,
        ) as e:
            self.reset_client()
            msg = f"无法连接 Transmission: {e}"
            raise EngineUnreachable(msg) from e

    async def _call(self, func: Callable[[Any], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._invoke, func)

    async def close(self) -> None:
        """关闭线程池."""
        self._executor.shutdown(wait=False)

    async def list_torrents(self) -> list[TorrentInfo]:
        """获取所有种子."""
        try:
            torrents = await self._call(
                lambda c: c.get_torrents(arguments=self.TORRENT_FIELDS)
            )
        except TransmissionError as e:
            msg = f"获取种子列表失败: {e}"
            raise EngineRejected(msg) from e
        return [TorrentInfo.from_fields(t.fields) for t in torrents]

    async def get_torrent(self, torrent_id: int) -> TorrentInfo:
        """获取单个种子，不存在时抛出 TorrentNotFound."""
        try:
            torrent = await self._call(
                lambda c: c.get_torrent(torrent_id, arguments=self.TORRENT_FIELDS)
            )
        except KeyError as e:
            msg = f"种子不存在: {torrent_id}"
            raise TorrentNotFound(msg) from e
        except TransmissionError as e:
            msg = f"获取种子失败: {e}"
            raise EngineRejected(msg) from e
        return TorrentInfo.from_fields(torrent.fields)

    async def add_by_url(self, url: str) -> AddedTorrent:
        """通过 URL 添加种子."""
        return await self._add(url, url)

    async def add_by_file(self, path: str | Path) -> AddedTorrent:
        """通过本地 .torrent 文件添加种子."""
        return await self._add(Path(path), str(path))

    async def _add(self, torrent: str | Path, label: str) -> AddedTorrent:
        try:
            result = await self._call(lambda c: c.add_torrent(torrent))
        except TransmissionError as e:
            msg = f"Transmission 拒绝添加 {label}: {e}"
            raise EngineRejected(msg) from e

        fields = result.fields
        added = AddedTorrent(
            id=int(fields["id"]),
            hash_string=fields.get("hashString", ""),
            name=fields.get("name", ""),
        )
        logger.info(f"已添加种子 {added.name} ({added.hash_string})")
        return added

    async def stop(self, torrent_id: int) -> None:
        """暂停种子."""
        try:
            await self._call(lambda c: c.stop_torrent(torrent_id))
        except TransmissionError as e:
            msg = f"暂停种子失败: {e}"
            raise EngineRejected(msg) from e

    async def session(self) -> dict[str, Any]:
        """获取会话配置（download-dir、incomplete-dir 等）."""
        try:
            result = await self._call(lambda c: c.get_session())
        except TransmissionError as e:
            msg = f"获取会话配置失败: {e}"
            raise EngineRejected(msg) from e
        return dict(result.fields)

    async def session_stats(self) -> dict[str, Any]:
        """获取传输统计（累计上传下载、当前速率）."""
        try:
            result = await self._call(lambda c: c.session_stats())
        except TransmissionError as e:
            msg = f"获取统计失败: {e}"
            raise EngineRejected(msg) from e
        return dict(result.fields)

    async def remove(self, torrent_id: int, delete_files: bool = False) -> RemovalResult:
        """
        删除种子.

        先走正常 RPC 删除并确认种子已消失；若种子仍然存在（Transmission
        删除无效的缺陷），则暂停种子、直接删除 resume/torrent 状态文件和
        数据目录，并安排一次防抖重启来刷新 Transmission 的内存缓存。

        Args:
            torrent_id: 种子 ID
            delete_files: 是否同时删除下载的数据

        Returns:
            RemovalResult: 删除结果
        """
        logger.info(f"删除种子 {torrent_id}, delete_files={delete_files}")

        snapshot: TorrentInfo | None = None
        try:
            snapshot = await self.get_torrent(torrent_id)
            logger.info(
                f"种子 {torrent_id} hash={snapshot.hash_string}, "
                f"name={snapshot.name}, 进度={snapshot.percent_done:.0%}"
            )
        except TorrentNotFound:
            logger.warning(f"删除前未找到种子 {torrent_id}")

        removed = False
        try:
            await self._call(
                lambda c: c.remove_torrent(torrent_id, delete_data=delete_files)
            )
            await asyncio.sleep(self.settle_seconds)
            try:
                await self.get_torrent(torrent_id)
                logger.warning(f"RPC 删除后种子 {torrent_id} 仍然存在，删除可能失败")
            except TorrentNotFound:
                removed = True
                logger.info(f"已确认种子 {torrent_id} 删除成功")
        except TransmissionError as e:
            logger.warning(f"RPC 删除种子 {torrent_id} 失败: {e}")

        result = RemovalResult(
            torrent_id=torrent_id,
            hash_string=snapshot.hash_string if snapshot else None,
            name=snapshot.name if snapshot else None,
        )
        if removed:
            return result

        if snapshot is None or not snapshot.hash_string:
            msg = f"删除种子 {torrent_id} 失败"
            raise EngineError(msg)

        logger.warning(f"对种子 {torrent_id} 使用补救删除流程...")
        await self._manual_cleanup(snapshot, delete_files)
        result.workaround_used = True

        if self.restarter is not None:
            self.restarter.request()
        self.reset_client()
        return result

    async def _manual_cleanup(self, torrent: TorrentInfo, delete_files: bool) -> None:
        """补救删除：每一步失败只记录日志，继续后续步骤."""
        try:
            await self.stop(torrent.id)
            logger.info(f"种子 {torrent.id} 已暂停")
        except EngineError as e:
            logger.warning(f"无法暂停种子 {torrent.id}: {e}")

        config_dir = Path(self.config.config_dir)
        targets = [
            config_dir / "resume" / f"{torrent.hash_string}.resume",
            config_dir / "torrents" / f"{torrent.hash_string}.torrent",
        ]

        if delete_files and torrent.name:
            if torrent.download_dir:
                targets.append(Path(torrent.download_dir) / torrent.name)

            if not torrent.is_complete:
                try:
                    session = await self.session()
                    incomplete_dir = session.get("incomplete-dir")
                    if session.get("incomplete-dir-enabled") and incomplete_dir:
                        targets.append(Path(incomplete_dir) / torrent.name)
                except EngineError as e:
                    logger.warning(f"无法读取未完成目录配置: {e}")

        loop = asyncio.get_running_loop()
        for target in targets:
            await loop.run_in_executor(self._executor, _delete_path, target)


def _delete_path(path: Path) -> None:
    """删除文件或目录，失败只记录日志."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        logger.info(f"已删除: {path}")
    except FileNotFoundError:
        logger.info(f"文件不存在，跳过: {path}")
    except OSError as e:
        logger.warning(f"无法删除 {path}: {e}")
