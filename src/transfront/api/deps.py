"""API 依赖 - 服务、会话、当前用户."""

from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from transfront.core.torrents import UserIdentity
from transfront.services import Services

TRUTHY = {"1", "true", "yes", "on"}


def get_services(request: Request) -> Services:
    """获取启动时创建的服务."""
    return request.app.state.services


async def get_session(
    services: Services = Depends(get_services),
) -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话（FastAPI 依赖注入用）."""
    async with services.session_factory() as session:
        yield session


def get_current_user(
    x_remote_user_id: str | None = Header(default=None),
    x_remote_user: str | None = Header(default=None),
    x_remote_admin: str | None = Header(default=None),
) -> UserIdentity:
    """从上游认证层传入的请求头读取用户身份."""
    if not x_remote_user_id or not x_remote_user:
        raise HTTPException(status_code=401, detail="未登录")
    try:
        user_id = int(x_remote_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="无效的用户标识") from None

    return UserIdentity(
        user_id=user_id,
        username=x_remote_user,
        is_admin=(x_remote_admin or "").strip().lower() in TRUTHY,
    )


def require_admin(
    user: UserIdentity = Depends(get_current_user),
) -> UserIdentity:
    """只允许管理员访问."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="需要管理员权限")
    return user
