"""
时钟与参考时区
所有"当前时间"都通过注入的 Clock 获取，不直接读取进程时钟或本地时区

约定：
- 时刻（instant）在内存中一律为带时区的 UTC datetime
- 数据库中以不带时区的 UTC TIMESTAMP 存储，读取时重新附加 UTC
- 仅在展示或按小时判断餐次时才转换到参考时区
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

from .exceptions import InvalidInputError

# 参考时区：判断"今天"和就餐时段的唯一依据
REFERENCE_TIMEZONE = ZoneInfo("Asia/Shanghai")


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """读取系统时间的时钟"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """固定时刻的时钟，用于测试和回放"""

    def __init__(self, instant: datetime):
        self._instant = ensure_aware(instant).astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = ensure_aware(instant).astimezone(timezone.utc)

    def advance(self, **kwargs) -> None:
        self._instant = self._instant + timedelta(**kwargs)


def ensure_aware(instant: datetime) -> datetime:
    """拒绝不带时区的 datetime，避免按本地时区被隐式解释"""
    if not isinstance(instant, datetime):
        raise InvalidInputError("时间必须为 datetime", "instant", instant)
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise InvalidInputError("时间必须带时区信息", "instant", instant)
    return instant


def to_reference(instant: datetime) -> datetime:
    """转换为参考时区时间（仅用于展示和餐次判断）"""
    return ensure_aware(instant).astimezone(REFERENCE_TIMEZONE)


def to_storage(instant: datetime) -> datetime:
    """转换为不带时区的 UTC 时间用于存储"""
    return ensure_aware(instant).astimezone(timezone.utc).replace(tzinfo=None)


def from_storage(value: Optional[datetime]) -> Optional[datetime]:
    """数据库中读出的 UTC TIMESTAMP 重新附加 UTC 时区"""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc)
    return value.replace(tzinfo=timezone.utc)
