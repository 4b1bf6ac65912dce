"""种子归属记录."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from transfront.models.ownership import (
    SOURCE_RSS,
    SOURCE_UPLOAD,
    SYSTEM_USER_ID,
    SYSTEM_USERNAME,
    TorrentOwnership,
)


class OwnershipLedger:
    """
    归属记录读写.

    归属记录是授权和自动清理的唯一依据，Transmission 自身没有归属概念。
    所有写操作只加入会话，由调用方决定何时提交。
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, hash_string: str) -> TorrentOwnership | None:
        """获取归属记录."""
        return await self.session.get(TorrentOwnership, hash_string)

    async def all(self) -> dict[str, TorrentOwnership]:
        """获取全部归属记录，按 hashString 索引."""
        result = await self.session.execute(select(TorrentOwnership))
        return {record.hash_string: record for record in result.scalars().all()}

    async def record_upload(
        self,
        hash_string: str,
        owner_id: int,
        owner_username: str,
    ) -> TorrentOwnership:
        """记录用户上传的种子."""
        return await self._put(
            TorrentOwnership(
                hash_string=hash_string,
                owner_id=owner_id,
                owner_username=owner_username,
                source=SOURCE_UPLOAD,
            )
        )

    async def record_feed_match(
        self,
        hash_string: str,
        feed_id: int,
        feed_url: str,
    ) -> TorrentOwnership:
        """记录 RSS 自动添加的种子，归属系统用户."""
        return await self._put(
            TorrentOwnership(
                hash_string=hash_string,
                owner_id=SYSTEM_USER_ID,
                owner_username=SYSTEM_USERNAME,
                source=SOURCE_RSS,
                feed_id=feed_id,
                feed_url=feed_url,
            )
        )

    async def _put(self, record: TorrentOwnership) -> TorrentOwnership:
        # 同一 hash 重新添加时覆盖旧记录
        return await self.session.merge(record)

    async def delete(self, hash_string: str) -> bool:
        """删除归属记录."""
        record = await self.get(hash_string)
        if record is None:
            return False
        await self.session.delete(record)
        return True

    async def set_block_auto_remove(self, hash_string: str, block: bool) -> None:
        """设置是否禁止自动清理，没有记录时创建一条无主记录."""
        record = await self.get(hash_string)
        if record is None:
            record = TorrentOwnership(
                hash_string=hash_string,
                owner_id=SYSTEM_USER_ID,
                owner_username="unknown",
            )
            self.session.add(record)
        record.block_auto_remove = block

    async def is_owner(self, hash_string: str | None, user_id: int) -> bool:
        """判断用户是否为种子所有者."""
        if not hash_string:
            return False
        record = await self.get(hash_string)
        return record is not None and record.owner_id == user_id

    async def can_modify(
        self,
        hash_string: str | None,
        user_id: int,
        is_admin: bool,
    ) -> bool:
        """只有所有者或管理员可以删除/修改种子."""
        if is_admin:
            return True
        return await self.is_owner(hash_string, user_id)


def acquisition_time(record: TorrentOwnership | None) -> datetime | None:
    """种子的添加时间，没有记录时为 None."""
    return record.added_at if record else None
