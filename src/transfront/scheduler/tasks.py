"""定时任务定义."""

import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from transfront.config import Settings
from transfront.services import Services

logger = logging.getLogger(__name__)


async def poll_feeds_task(services: Services) -> None:
    """RSS 轮询任务：轮询全部 Feed."""
    poller = services.poller
    if poller.is_polling_all:
        logger.info("已有轮询任务在运行，跳过本次调度")
        return

    try:
        results = await poller.poll_all()
    except Exception as e:
        logger.exception(f"RSS 轮询任务失败: {e}")
        return

    added = sum(result.added for result in results.values())
    failed = sum(1 for result in results.values() if result.error)
    logger.info(f"RSS 轮询完成: {len(results)} 个 Feed, 新添加 {added}, 失败 {failed}")


async def disk_check_task(services: Services) -> None:
    """磁盘检查任务：空间不足时自动清理."""
    monitor = services.disk_monitor
    if monitor.is_running:
        logger.info("磁盘检查已在运行，跳过本次调度")
        return

    try:
        report = await monitor.check()
    except Exception as e:
        logger.exception(f"磁盘检查失败: {e}")
        return

    if report.removed_count:
        logger.info(
            f"磁盘清理完成: 删除 {report.removed_count} 个种子, "
            f"可用空间 {report.free_percent_before:.2f}% -> "
            f"{report.free_percent_after:.2f}%"
        )


def create_scheduler(settings: Settings, services: Services) -> AsyncIOScheduler:
    """创建并启动定时任务调度器."""
    scheduler = AsyncIOScheduler()
    now = datetime.now()

    scheduler.add_job(
        poll_feeds_task,
        "interval",
        minutes=settings.rss_poll_interval_minutes,
        args=[services],
        id="rss_poll_task",
        name="RSS 轮询",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    # 启动后稍等再轮询，让 Transmission 等依赖服务先就绪
    scheduler.add_job(
        poll_feeds_task,
        "date",  # 一次性任务
        run_date=now + timedelta(seconds=settings.rss_initial_delay_seconds),
        args=[services],
        id="rss_poll_task_initial",
        name="初始 RSS 轮询",
    )

    scheduler.add_job(
        disk_check_task,
        "interval",
        minutes=settings.disk_check_interval_minutes,
        args=[services],
        id="disk_check_task",
        name="磁盘空间检查",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        disk_check_task,
        "date",
        run_date=now + timedelta(seconds=settings.disk_initial_delay_seconds),
        args=[services],
        id="disk_check_task_initial",
        name="初始磁盘检查",
    )

    scheduler.start()
    logger.info(
        f"定时任务调度器已启动，RSS 轮询间隔: {settings.rss_poll_interval_minutes} 分钟, "
        f"磁盘检查间隔: {settings.disk_check_interval_minutes} 分钟"
    )
    return scheduler


async def shutdown_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    """关闭定时任务调度器."""
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("定时任务调度器已关闭")
