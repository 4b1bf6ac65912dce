"""服务装配 - 启动时显式创建各组件."""

import functools
import logging
import shlex
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transfront.config import Settings
from transfront.core.disk_monitor import DiskMonitor
from transfront.core.poller import FeedPoller
from transfront.core.restart import EngineRestarter, run_restart_command
from transfront.core.torrents import TorrentManager
from transfront.core.transmission import TransmissionConfig, TransmissionService
from transfront.fetcher.feed_fetcher import FeedFetcher

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """运行期组件，存放在 app.state.services 并传给定时任务."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    engine: TransmissionService
    restarter: EngineRestarter | None
    fetcher: FeedFetcher
    poller: FeedPoller
    disk_monitor: DiskMonitor
    torrents: TorrentManager

    async def close(self) -> None:
        """停止重启任务并关闭 Transmission 线程池."""
        if self.restarter is not None:
            await self.restarter.close()
        await self.engine.close()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    engine: TransmissionService | None = None,
    fetcher: FeedFetcher | None = None,
) -> Services:
    """按配置创建所有组件（测试时可传入替身）."""
    restarter: EngineRestarter | None = None

    if engine is None:
        command = shlex.split(settings.transmission_restart_command)
        if command:
            restarter = EngineRestarter(
                functools.partial(
                    run_restart_command, command, settings.restart_grace_seconds
                ),
                debounce_seconds=settings.restart_debounce_seconds,
            )
        else:
            logger.warning("未配置 Transmission 重启命令，补救删除后不会重启")

        engine = TransmissionService(
            TransmissionConfig(
                host=settings.transmission_host,
                port=settings.transmission_port,
                username=settings.transmission_username,
                password=settings.transmission_password,
                timeout=settings.transmission_timeout_seconds,
                config_dir=settings.transmission_config_dir,
            ),
            restarter=restarter,
            settle_seconds=settings.remove_settle_seconds,
        )
        if restarter is not None:
            restarter.on_restarted = engine.reset_client
    else:
        restarter = engine.restarter

    fetcher = fetcher or FeedFetcher.from_settings(settings)

    return Services(
        settings=settings,
        session_factory=session_factory,
        engine=engine,
        restarter=restarter,
        fetcher=fetcher,
        poller=FeedPoller(
            session_factory,
            engine,
            fetcher,
            max_pattern_length=settings.rule_pattern_max_length,
        ),
        disk_monitor=DiskMonitor(
            session_factory,
            engine,
            threshold_percent=settings.disk_threshold_percent,
        ),
        torrents=TorrentManager(
            session_factory,
            engine,
            upload_dir=settings.upload_dir,
            max_upload_bytes=settings.upload_max_bytes,
            max_upload_files=settings.upload_max_files,
        ),
    )
