"""
日历日期（civil date）约定

报餐日期是"某年某月某日"，不附带时刻和时区。
- 只接受 date 对象或严格的 YYYY-MM-DD 字符串
- 判断过去/今天/未来时直接与参考时区下的"今天"比较
- 从不把日期转换成某个时刻（如 UTC 零点）再取回日期，那样会产生 ±1 天的偏移
"""

import re
from datetime import date, datetime
from typing import Union

from .clock import Clock, to_reference
from .exceptions import InvalidInputError

_CIVIL_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_civil_date(value: Union[str, date], field: str = "meal_date") -> date:
    # datetime 是 date 的子类，必须先排除
    if isinstance(value, datetime):
        raise InvalidInputError("日期不能携带时刻信息", field, value)
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _CIVIL_DATE_RE.match(value.strip()):
        raise InvalidInputError("日期格式必须为 YYYY-MM-DD", field, value)
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise InvalidInputError("日期不存在", field, value)


def format_civil_date(value: date) -> str:
    return value.isoformat()


def civil_date_of(instant: datetime) -> date:
    """某一时刻在参考时区下对应的日期"""
    return to_reference(instant).date()


def today(clock: Clock) -> date:
    return civil_date_of(clock.now())


def is_past(value: date, clock: Clock) -> bool:
    return value < today(clock)


def is_today(value: date, clock: Clock) -> bool:
    return value == today(clock)


def is_future(value: date, clock: Clock) -> bool:
    return value > today(clock)
