"""Feed 订阅源 API（仅管理员）."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from transfront.api.deps import get_services, get_session, require_admin
from transfront.core.feed_store import FeedStore
from transfront.core.poller import FeedPollResult
from transfront.models.feed import Feed
from transfront.services import Services

router = APIRouter(
    prefix="/api/feeds",
    tags=["feeds"],
    dependencies=[Depends(require_admin)],
)


class FeedCreate(BaseModel):
    """新增 Feed 请求."""

    url: str
    pattern: str | None = None
    min_size: int | None = Field(default=None, ge=0)
    max_size: int | None = Field(default=None, gt=0)
    category: str | None = None


class FeedUpdate(BaseModel):
    """修改 Feed 请求，只提交需要修改的字段."""

    url: str | None = None
    pattern: str | None = None
    min_size: int | None = Field(default=None, ge=0)
    max_size: int | None = Field(default=None, gt=0)
    category: str | None = None


def _feed_to_dict(feed: Feed) -> dict[str, Any]:
    return {
        "id": feed.id,
        "url": feed.url,
        "pattern": feed.pattern,
        "min_size": feed.min_size,
        "max_size": feed.max_size,
        "category": feed.category,
        "created_at": feed.created_at.isoformat(),
        "last_poll_at": feed.last_poll_at.isoformat() if feed.last_poll_at else None,
        "matched_count": feed.matched_count,
    }


def _poll_result_to_dict(result: FeedPollResult) -> dict[str, Any]:
    return {
        "feed_id": result.feed_id,
        "already_seen": result.already_seen,
        "no_match": result.no_match,
        "already_exists": result.already_exists,
        "added": result.added,
        "failed_to_add": result.failed_to_add,
        "error": result.error,
        "items": [
            {
                "title": item.title,
                "outcome": item.outcome,
                "reason": item.reason,
                "torrent_id": item.torrent_id,
                "error": item.error,
            }
            for item in result.items
        ],
        "started_at": result.started_at.isoformat(),
        "completed_at": (
            result.completed_at.isoformat() if result.completed_at else None
        ),
    }


def _store(session: AsyncSession, services: Services) -> FeedStore:
    return FeedStore(session, services.settings.rule_pattern_max_length)


@router.get("")
async def list_feeds(
    session: AsyncSession = Depends(get_session),
    services: Services = Depends(get_services),
) -> dict:
    """获取订阅列表."""
    feeds = await _store(session, services).list_feeds()
    return {
        "total": len(feeds),
        "feeds": [_feed_to_dict(feed) for feed in feeds],
    }


@router.post("", status_code=201)
async def create_feed(
    body: FeedCreate,
    session: AsyncSession = Depends(get_session),
    services: Services = Depends(get_services),
) -> dict:
    """新增订阅."""
    feed = await _store(session, services).add_feed(
        url=body.url,
        pattern=body.pattern,
        min_size=body.min_size,
        max_size=body.max_size,
        category=body.category,
    )
    return _feed_to_dict(feed)


@router.post("/poll")
async def poll_all_feeds(
    services: Services = Depends(get_services),
) -> dict:
    """立即轮询全部 Feed."""
    results = await services.poller.poll_all()
    return {
        "total": len(results),
        "results": [_poll_result_to_dict(result) for result in results.values()],
    }


@router.get("/{feed_id}")
async def get_feed(
    feed_id: int,
    session: AsyncSession = Depends(get_session),
    services: Services = Depends(get_services),
) -> dict:
    """获取 Feed 详情."""
    feed = await _store(session, services).get_feed(feed_id)
    return _feed_to_dict(feed)


@router.patch("/{feed_id}")
async def update_feed(
    feed_id: int,
    body: FeedUpdate,
    session: AsyncSession = Depends(get_session),
    services: Services = Depends(get_services),
) -> dict:
    """修改订阅."""
    feed = await _store(session, services).update_feed(
        feed_id, body.model_dump(exclude_unset=True)
    )
    return _feed_to_dict(feed)


@router.delete("/{feed_id}")
async def delete_feed(
    feed_id: int,
    session: AsyncSession = Depends(get_session),
    services: Services = Depends(get_services),
) -> dict:
    """删除订阅（已处理过的条目仍然记录在案）."""
    await _store(session, services).delete_feed(feed_id)
    return {"success": True, "id": feed_id}


@router.post("/{feed_id}/poll")
async def poll_feed(
    feed_id: int,
    services: Services = Depends(get_services),
) -> dict:
    """立即轮询单个 Feed."""
    result = await services.poller.poll_feed(feed_id)
    return _poll_result_to_dict(result)
