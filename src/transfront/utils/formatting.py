"""时间与大小格式化工具."""

import math
from datetime import UTC, datetime

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def utcnow() -> datetime:
    """当前 UTC 时间（不带时区，与 SQLite 存储一致）."""
    return datetime.now(UTC).replace(tzinfo=None)


def format_bytes(size: int | float | None) -> str:
    """
    将字节数格式化为可读字符串.

    Args:
        size: 字节数

    Returns:
        例如 "1.5 GB"
    """
    if not size or size <= 0:
        return "0 B"

    index = min(int(math.log(size, 1024)), len(_SIZE_UNITS) - 1)
    value = round(size / (1024**index), 2)
    return f"{value:g} {_SIZE_UNITS[index]}"
