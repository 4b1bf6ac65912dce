"""RSS 抓取器."""

import asyncio
import logging
from collections.abc import Iterator
from datetime import datetime
from typing import Any

import feedparser
import httpx
from pydantic import BaseModel, Field

from transfront.config import Settings
from transfront.errors import EgressDenied, NetworkError, ValidationError
from transfront.fetcher.egress import IPAddress, ensure_public_url

logger = logging.getLogger(__name__)


class Enclosure(BaseModel):
    """条目附件."""

    url: str
    length: int | None = None  # 声明的字节数
    type: str | None = None  # MIME 类型


class FeedItem(BaseModel):
    """Feed 中的一个条目."""

    title: str = ""
    link: str | None = None
    guid: str | None = None  # 没有 guid 时为 link
    published_at: datetime | None = None
    description: str | None = None
    enclosures: list[Enclosure] = Field(default_factory=list)


def _parse_size(value: Any) -> int | None:
    """解析声明的大小，无效或为 0 时视为未知."""
    try:
        size = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return size if size > 0 else None


def _entry_to_item(entry: Any) -> FeedItem:
    """将 feedparser 条目转换为 FeedItem."""
    link = entry.get("link") or None

    published_at = None
    published = entry.get("published_parsed") or entry.get("updated_parsed")
    if published:
        # feedparser 已统一转换为 UTC
        published_at = datetime(*published[:6])

    enclosures = [
        Enclosure(
            url=enc.get("href") or enc.get("url"),
            length=_parse_size(enc.get("length")),
            type=enc.get("type") or None,
        )
        for enc in entry.get("enclosures", [])
        if enc.get("href") or enc.get("url")
    ]

    return FeedItem(
        title=entry.get("title", ""),
        link=link,
        guid=entry.get("id") or link,
        published_at=published_at,
        description=entry.get("summary"),
        enclosures=enclosures,
    )


class FeedFetcher:
    """在出站限制下下载并解析 RSS 文档."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        max_body_bytes: int = 5 * 1024 * 1024,
        max_redirects: int = 3,
        user_agent: str = "Transfront-RSS/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_body_bytes = max_body_bytes
        self.max_redirects = max_redirects
        self.user_agent = user_agent
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeedFetcher":
        """根据配置创建抓取器."""
        return cls(
            timeout_seconds=settings.rss_fetch_timeout_seconds,
            max_body_bytes=settings.rss_max_body_bytes,
            max_redirects=settings.rss_max_redirects,
            user_agent=settings.rss_user_agent,
        )

    async def fetch(self, url: str) -> Iterator[FeedItem]:
        """
        抓取 Feed 并返回条目.

        Args:
            url: Feed 地址

        Returns:
            按文档顺序排列的条目迭代器（只能遍历一次）
        """
        try:
            body = await asyncio.wait_for(
                self._download(url), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            msg = f"抓取超时 ({self.timeout_seconds}s): {url}"
            raise NetworkError(msg) from e

        # feedparser 是同步库，放到线程池里解析
        loop = asyncio.get_running_loop()
        parsed = await loop.run_in_executor(None, feedparser.parse, body)

        if parsed.get("bozo") and not parsed.entries:
            msg = f"Feed 解析失败: {parsed.get('bozo_exception')}"
            raise NetworkError(msg)

        items = [_entry_to_item(entry) for entry in parsed.entries]
        logger.info(f"从 {url} 解析出 {len(items)} 个条目")
        return iter(items)

    async def _download(self, url: str) -> bytes:
        """下载文档，手动跟随重定向以便每一跳都经过地址检查."""
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            follow_redirects=False,
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        ) as client:
            current = url
            for _ in range(self.max_redirects + 1):
                try:
                    addresses = await ensure_public_url(current)
                except ValidationError as e:
                    # 重定向到非 HTTP 地址同样属于出站拒绝
                    raise EgressDenied(str(e)) from e

                request = self._pinned_request(client, current, addresses[0])
                try:
                    response = await client.send(request, stream=True)
                    try:
                        if response.is_redirect:
                            location = response.headers.get("location")
                            if not location:
                                msg = f"重定向缺少 Location: {current}"
                                raise NetworkError(msg)
                            current = str(httpx.URL(current).join(location))
                            continue

                        if not response.is_success:
                            msg = f"HTTP {response.status_code}: {current}"
                            raise NetworkError(msg)

                        return await self._read_limited(response)
                    finally:
                        await response.aclose()
                except httpx.HTTPError as e:
                    msg = f"请求失败: {current} ({e})"
                    raise NetworkError(msg) from e

        msg = f"重定向次数超过 {self.max_redirects}: {url}"
        raise NetworkError(msg)

    @staticmethod
    def _pinned_request(
        client: httpx.AsyncClient, url: str, address: IPAddress
    ) -> httpx.Request:
        """
        构造直连已检查地址的请求.

        主机名不再交给 httpx 重新解析，避免检查后 DNS 结果被替换成内网地址。
        Host 头和 TLS SNI 仍使用原主机名，证书按原主机名校验。
        """
        target = httpx.URL(url)
        if target.host == str(address):
            return client.build_request("GET", target)

        host = f"[{address}]" if address.version == 6 else str(address)
        return client.build_request(
            "GET",
            target.copy_with(host=host),
            headers={"Host": target.netloc.decode("ascii")},
            extensions={"sni_hostname": target.host},
        )

    async def _read_limited(self, response: httpx.Response) -> bytes:
        """读取响应体，超过上限立即中止."""
        declared = response.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_body_bytes:
            msg = f"响应体过大: {declared} 字节"
            raise NetworkError(msg)

        chunks: list[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > self.max_body_bytes:
                msg = f"响应体超过 {self.max_body_bytes} 字节"
                raise NetworkError(msg)
            chunks.append(chunk)
        return b"".join(chunks)
