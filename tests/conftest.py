"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator, Iterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from transmission_rpc.error import TransmissionConnectError, TransmissionError

from transfront.config import Settings
from transfront.core.transmission import TransmissionConfig, TransmissionService
from transfront.errors import NetworkError
from transfront.fetcher.feed_fetcher import FeedItem
from transfront.main import app
from transfront.models.feed import Feed
from transfront.services import Services, build_services


class FakeRpcClient:
    """模拟 transmission_rpc.Client，只实现用到的方法."""

    def __init__(self, download_dir: str = "/downloads") -> None:
        self.torrents: dict[int, dict[str, Any]] = {}
        self.session_fields: dict[str, Any] = {
            "download-dir": download_dir,
            "incomplete-dir": "/incomplete",
            "incomplete-dir-enabled": False,
        }
        self.stats_fields: dict[str, Any] = {
            "downloadSpeed": 0,
            "uploadSpeed": 0,
            "cumulative-stats": {"downloadedBytes": 0, "uploadedBytes": 0},
        }
        self.remove_noop = False  # 模拟删除无效的缺陷
        self.unreachable = False
        self.reject_urls: set[str] = set()
        self.added_urls: list[str] = []
        self.added_files: list[Path] = []
        self.remove_calls: list[tuple[int, bool]] = []
        self.stopped: list[int] = []
        self._next_id = 1

    def put(
        self,
        name: str,
        hash_string: str | None = None,
        *,
        percent_done: float = 1.0,
        status: int = 6,
        total_size: int = 1000,
        download_dir: str | None = None,
    ) -> int:
        """放入一个种子，返回 id."""
        torrent_id = self._next_id
        self._next_id += 1
        self.torrents[torrent_id] = {
            "id": torrent_id,
            "hashString": hash_string or f"hash{torrent_id:04d}",
            "name": name,
            "status": status,
            "percentDone": percent_done,
            "totalSize": total_size,
            "downloadDir": download_dir or self.session_fields["download-dir"],
            "rateDownload": 0,
            "rateUpload": 0,
        }
        return torrent_id

    def _check(self) -> None:
        if self.unreachable:
            raise TransmissionConnectError("connection refused")

    def get_torrents(self, arguments: list[str] | None = None) -> list[SimpleNamespace]:
        self._check()
        return [SimpleNamespace(fields=dict(t)) for t in self.torrents.values()]

    def get_torrent(
        self, torrent_id: int, arguments: list[str] | None = None
    ) -> SimpleNamespace:
        self._check()
        if torrent_id not in self.torrents:
            raise KeyError("Torrent not found in result")
        return SimpleNamespace(fields=dict(self.torrents[torrent_id]))

    def add_torrent(self, torrent: Any) -> SimpleNamespace:
        self._check()
        if isinstance(torrent, Path):
            self.added_files.append(torrent)
            name = torrent.name.split("-", 1)[-1].removesuffix(".torrent")
        else:
            if torrent in self.reject_urls:
                raise TransmissionError("invalid or corrupt torrent file")
            self.added_urls.append(torrent)
            name = torrent.rsplit("/", 1)[-1].removesuffix(".torrent")
        torrent_id = self.put(name, percent_done=0.0, status=4)
        return SimpleNamespace(fields=dict(self.torrents[torrent_id]))

    def stop_torrent(self, torrent_id: int) -> None:
        self._check()
        self.stopped.append(torrent_id)

    def remove_torrent(self, torrent_id: int, delete_data: bool = False) -> None:
        self._check()
        self.remove_calls.append((torrent_id, delete_data))
        if not self.remove_noop:
            self.torrents.pop(torrent_id, None)

    def get_session(self) -> SimpleNamespace:
        self._check()
        return SimpleNamespace(fields=dict(self.session_fields))

    def session_stats(self) -> SimpleNamespace:
        self._check()
        return SimpleNamespace(fields=dict(self.stats_fields))


class FakeFetcher:
    """按 URL 返回预设条目的抓取器."""

    def __init__(self) -> None:
        self.documents: dict[str, list[FeedItem]] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    async def fetch(self, url: str) -> Iterator[FeedItem]:
        self.calls.append(url)
        if url in self.failing:
            msg = f"抓取超时: {url}"
            raise NetworkError(msg)
        return iter(list(self.documents.get(url, [])))


def torrent_item(
    title: str,
    size: int | None = None,
    guid: str | None = None,
) -> FeedItem:
    """构造带 .torrent 附件的条目."""
    link = f"https://tracker.example.com/torrents/{title}.torrent"
    return FeedItem(
        title=title,
        link=f"https://tracker.example.com/details/{title}",
        guid=guid or f"guid-{title}",
        enclosures=[
            {"url": link, "length": size, "type": "application/x-bittorrent"}
        ],
    )


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """创建测试用的内存数据库（多个会话共享同一连接）."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """创建测试用的数据库会话."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def rpc(tmp_path: Path) -> FakeRpcClient:
    """模拟的 Transmission RPC 客户端."""
    download_dir = tmp_path / "downloads"
    download_dir.mkdir()
    return FakeRpcClient(download_dir=str(download_dir))


@pytest_asyncio.fixture
async def engine(
    rpc: FakeRpcClient, tmp_path: Path
) -> AsyncGenerator[TransmissionService, None]:
    """使用模拟客户端的 TransmissionService."""
    service = TransmissionService(
        TransmissionConfig(config_dir=str(tmp_path / "transmission")),
        settle_seconds=0,
        client_factory=lambda config: rpc,
    )
    yield service
    await service.close()


@pytest.fixture
def fetcher() -> FakeFetcher:
    """模拟的 RSS 抓取器."""
    return FakeFetcher()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """测试配置."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        transmission_restart_command="",
        upload_dir=str(tmp_path / "uploads"),
    )


@pytest_asyncio.fixture
async def services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    engine: TransmissionService,
    fetcher: FakeFetcher,
) -> AsyncGenerator[Services, None]:
    """组装好的服务."""
    built = build_services(settings, session_factory, engine=engine, fetcher=fetcher)
    yield built
    await built.close()


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    """创建测试用的 HTTP 客户端."""
    app.state.services = services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def sample_feed(async_session: AsyncSession) -> Feed:
    """创建测试用的 Feed."""
    feed = Feed(
        url="https://tracker.example.com/rss",
        pattern="S01E0[1-3]",
        min_size=100_000_000,
        max_size=2_000_000_000,
        category="TV",
    )
    async_session.add(feed)
    await async_session.commit()
    await async_session.refresh(feed)
    return feed


ADMIN_HEADERS = {
    "X-Remote-User-Id": "1",
    "X-Remote-User": "admin",
    "X-Remote-Admin": "true",
}
ALICE_HEADERS = {"X-Remote-User-Id": "2", "X-Remote-User": "alice"}
BOB_HEADERS = {"X-Remote-User-Id": "3", "X-Remote-User": "bob"}
