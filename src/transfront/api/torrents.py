"""种子 API."""

from typing import Any

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from transfront.api.deps import get_current_user, get_services, require_admin
from transfront.core.torrents import UploadedFile, UserIdentity
from transfront.services import Services

router = APIRouter(prefix="/api/torrents", tags=["torrents"])


class BlockAutoRemove(BaseModel):
    """禁止自动清理开关."""

    block: bool


@router.get("")
async def list_torrents(
    user: UserIdentity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    """获取所有种子及归属信息."""
    return await services.torrents.list_with_ownership(user)


@router.post("/upload")
async def upload_torrents(
    torrents: list[UploadFile] = File(...),
    user: UserIdentity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    """上传 .torrent 文件."""
    limit = services.settings.upload_max_bytes
    files = []
    for upload in torrents:
        # 多读一个字节用于判断是否超限
        content = await upload.read(limit + 1)
        files.append(UploadedFile(filename=upload.filename or "", content=content))
        await upload.close()

    return await services.torrents.upload(user, files)


@router.get("/stats")
async def get_stats(
    user: UserIdentity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """获取汇总统计."""
    return await services.torrents.stats()


@router.get("/disk-usage")
async def get_disk_usage(
    user: UserIdentity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """获取磁盘使用情况."""
    return await services.torrents.disk_usage()


@router.post("/disk-check")
async def run_disk_check(
    user: UserIdentity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """立即执行一次磁盘检查."""
    monitor = services.disk_monitor
    if monitor.is_running:
        return {"status": "running", "message": "磁盘检查已在运行中"}

    report = await monitor.check()
    return {
        "status": report.status,
        "message": report.message,
        "threshold_percent": report.threshold_percent,
        "free_percent_before": round(report.free_percent_before, 2),
        "free_percent_after": round(report.free_percent_after, 2),
        "removed_count": report.removed_count,
        "removed": [
            {"id": t.id, "name": t.name, "size": t.size, "hash_string": t.hash_string}
            for t in report.removed
        ],
    }


@router.delete("/{torrent_id}")
async def delete_torrent(
    torrent_id: int,
    user: UserIdentity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """删除种子及其数据."""
    return await services.torrents.delete(user, torrent_id)


@router.patch("/{torrent_id}/block-auto-remove")
async def set_block_auto_remove(
    torrent_id: int,
    body: BlockAutoRemove,
    user: UserIdentity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """设置是否禁止自动清理."""
    return await services.torrents.set_block_auto_remove(user, torrent_id, body.block)
