"""Transfront 主应用入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from transfront.api import feeds, torrents
from transfront.config import get_settings
from transfront.errors import (
    EngineError,
    FeedNotFound,
    NetworkError,
    PermissionDenied,
    TorrentNotFound,
    TransfrontError,
    ValidationError,
)
from transfront.models.database import close_db, init_db
from transfront.scheduler.tasks import create_scheduler, shutdown_scheduler
from transfront.services import build_services

# 配置日志
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理."""
    app_settings = get_settings()

    # 启动时初始化
    logger.info("正在初始化数据库...")
    session_factory = await init_db(app_settings.database_url)

    services = build_services(app_settings, session_factory)
    app.state.services = services

    logger.info("正在检查 Transmission 连接...")
    try:
        await services.engine.session()
        logger.info("Transmission 连接正常")
    except EngineError as e:
        logger.critical(f"无法连接 Transmission，请检查配置: {e}")

    logger.info("正在启动定时任务...")
    scheduler = create_scheduler(app_settings, services)

    logger.info("Transfront 启动完成！")
    yield

    # 关闭时清理
    logger.info("正在关闭...")
    await shutdown_scheduler(scheduler)
    await services.close()
    await close_db(session_factory)
    logger.info("Transfront 已关闭")


app = FastAPI(
    title="Transfront",
    description="Transmission 多用户前端 - RSS 自动下载与磁盘空间管理",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 业务错误 -> HTTP 状态码，子类在前
ERROR_STATUS: list[tuple[type[TransfrontError], int]] = [
    (ValidationError, 400),
    (PermissionDenied, 403),
    (FeedNotFound, 404),
    (TorrentNotFound, 404),
    (NetworkError, 502),
    (EngineError, 502),
]


@app.exception_handler(TransfrontError)
async def transfront_error_handler(
    request: Request, exc: TransfrontError
) -> JSONResponse:
    """业务错误统一转换为 JSON 响应."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} 失败: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# 注册路由
app.include_router(feeds.router)
app.include_router(torrents.router)


@app.get("/")
async def root() -> dict:
    """根路径."""
    return {
        "name": "Transfront",
        "version": "0.1.0",
        "description": "Transmission 多用户前端",
    }


@app.get("/health")
async def health(request: Request) -> dict:
    """健康检查."""
    services = request.app.state.services
    try:
        await services.engine.session()
        engine_ok = True
    except EngineError:
        engine_ok = False
    return {"status": "ok", "engine": engine_ok}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "transfront.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
