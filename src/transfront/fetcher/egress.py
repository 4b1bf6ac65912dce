"""出站请求地址检查，阻止访问内网地址."""

import asyncio
import ipaddress
import socket
from urllib.parse import urlsplit

from transfront.errors import EgressDenied, NetworkError, ValidationError

ALLOWED_SCHEMES = frozenset({"http", "https"})

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def check_scheme(url: str) -> tuple[str, int | None]:
    """
    校验 URL 协议，只允许 http/https.

    Returns:
        (主机名, 端口)
    """
    parts = urlsplit(url)
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        msg = f"只允许 HTTP/HTTPS 地址: {url}"
        raise ValidationError(msg)
    if not parts.hostname:
        msg = f"URL 缺少主机名: {url}"
        raise ValidationError(msg)
    try:
        port = parts.port
    except ValueError as e:
        msg = f"URL 端口无效: {url}"
        raise ValidationError(msg) from e
    return parts.hostname, port


def is_public_address(address: IPAddress) -> bool:
    """判断地址是否为公网地址."""
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped

    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    )


async def resolve_host(host: str, port: int | None = None) -> list[IPAddress]:
    """解析主机名得到全部地址."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        msg = f"DNS 解析失败: {host} ({e})"
        raise NetworkError(msg) from e

    addresses: list[IPAddress] = []
    for _family, _type, _proto, _canon, sockaddr in infos:
        # IPv6 地址可能带有 %scope
        raw = str(sockaddr[0]).split("%", 1)[0]
        addresses.append(ipaddress.ip_address(raw))

    if not addresses:
        msg = f"DNS 解析失败: {host} 没有地址"
        raise NetworkError(msg)
    return addresses


async def ensure_public_url(url: str) -> list[IPAddress]:
    """
    出站前检查目标地址.

    任意一个解析结果落在回环、链路本地或私有网段都会拒绝。

    Returns:
        检查通过的地址，连接时应使用这些地址而不是重新解析
    """
    host, port = check_scheme(url)

    addresses = await resolve_host(host, port)
    for address in addresses:
        if not is_public_address(address):
            msg = f"不允许访问内网地址: {host} -> {address}"
            raise EgressDenied(msg)
    return addresses
