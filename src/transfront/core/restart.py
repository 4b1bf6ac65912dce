"""Transmission 防抖重启."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from transfront.errors import EngineError

logger = logging.getLogger(__name__)


class RestartState:
    """重启状态."""

    IDLE = "idle"
    PENDING = "pending"  # 等待静默期结束
    RESTARTING = "restarting"


async def run_restart_command(command: list[str], grace_seconds: float) -> None:
    """执行重启命令并等待守护进程重新就绪."""
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await process.communicate()
    if process.returncode != 0:
        detail = stderr.decode(errors="replace").strip()
        msg = f"重启命令失败 (exit={process.returncode}): {detail}"
        raise EngineError(msg)

    await asyncio.sleep(grace_seconds)


class EngineRestarter:
    """
    防抖重启器.

    静默期内的多次请求合并为一次重启；请求方拿到同一个 Future，
    不需要等待它。状态由一个后台任务消费请求队列来驱动:
    IDLE -> PENDING -> RESTARTING -> IDLE。
    """

    def __init__(
        self,
        action: Callable[[], Awaitable[None]],
        debounce_seconds: float = 3.0,
        on_restarted: Callable[[], None] | None = None,
    ) -> None:
        self._action = action
        self.debounce_seconds = debounce_seconds
        self.on_restarted = on_restarted
        self.state = RestartState.IDLE
        self.restart_count = 0
        self._queue: asyncio.Queue[None] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._pending: asyncio.Future[None] | None = None

    @property
    def pending_restart(self) -> asyncio.Future[None] | None:
        """尚未执行的重启（已开始执行的不算）."""
        return self._pending

    def request(self) -> asyncio.Future[None]:
        """请求一次重启，返回该次重启完成时结束的 Future."""
        loop = asyncio.get_running_loop()
        if self._worker is None or self._worker.done():
            self._queue = asyncio.Queue()
            self._worker = loop.create_task(self._run())

        if self._pending is None:
            self._pending = loop.create_future()

        assert self._queue is not None
        self._queue.put_nowait(None)
        return self._pending

    async def _run(self) -> None:
        assert self._queue is not None
        queue = self._queue

        while True:
            await queue.get()
            self.state = RestartState.PENDING
            logger.info(
                f"已安排 Transmission 重启，静默 {self.debounce_seconds}s 后执行"
            )

            # 静默期内有新请求则重新计时
            while True:
                try:
                    await asyncio.wait_for(queue.get(), timeout=self.debounce_seconds)
                except asyncio.TimeoutError:
                    break
                logger.info("Transmission 重启已在计划中，合并本次请求")

            self.state = RestartState.RESTARTING
            waiter, self._pending = self._pending, None
            logger.info("正在重启 Transmission 以清理内存缓存...")
            try:
                await self._action()
                self.restart_count += 1
                logger.info("Transmission 重启完成")
            except Exception as e:
                logger.exception(f"Transmission 重启失败: {e}")
            finally:
                if self.on_restarted:
                    self.on_restarted()
                self.state = RestartState.IDLE
                if waiter is not None and not waiter.done():
                    waiter.set_result(None)

    async def close(self) -> None:
        """停止后台任务."""
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self.state = RestartState.IDLE
