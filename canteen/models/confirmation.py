"""
就餐确认相关数据模型
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .base import BaseEntity
from .reservation import MealCategory


class ConfirmationChannel(str, Enum):
    """确认方式"""
    SELF = "self"    # 本人确认
    ADMIN = "admin"  # 管理员代确认
    BADGE = "badge"  # 扫码/刷工牌


class ConfirmationLogEntry(BaseEntity):
    """就餐确认日志（只追加）"""
    id: int = Field(..., description="日志ID")
    reservation_id: int = Field(..., description="报餐ID")
    person_id: str = Field(..., description="就餐人ID")
    actor_id: str = Field(..., description="操作人ID")
    channel: ConfirmationChannel = Field(..., description="确认方式")
    timestamp: datetime = Field(..., description="确认时间（UTC）")
    note: Optional[str] = Field(None, description="备注")


class ConfirmationResult(BaseModel):
    """确认就餐结果"""
    reservation_id: int
    person_id: str
    actor_id: str
    channel: ConfirmationChannel
    meal_date: date
    meal_category: MealCategory
    consumed_at: datetime
    log_id: int


class BatchItemError(BaseModel):
    reservation_id: int
    person_id: str
    error_code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class BatchConfirmationResult(BaseModel):
    """批量代确认结果"""
    success_count: int = 0
    total_count: int = 0
    results: List[ConfirmationResult] = Field(default_factory=list)
    errors: List[BatchItemError] = Field(default_factory=list)


class AuditFilter(BaseModel):
    """确认日志查询条件"""
    reservation_id: Optional[int] = None
    person_id: Optional[str] = None
    actor_id: Optional[str] = None
    channel: Optional[ConfirmationChannel] = None
    since: Optional[datetime] = Field(None, description="起始时间（含）")
    until: Optional[datetime] = Field(None, description="截止时间（不含）")
    limit: Optional[int] = Field(None, ge=1, description="最多返回条数")


class MealStatus(BaseModel):
    """某人某天某餐次的报餐/就餐状态"""
    meal_category: MealCategory
    registered: bool = False
    reservation_id: Optional[int] = None
    lifecycle_status: Optional[str] = None
    consumption_status: Optional[str] = None
    consumed_at: Optional[datetime] = None
    remark: Optional[str] = None


class PersonDayStatus(BaseModel):
    person_id: str
    name: Optional[str] = None
    meal_date: date
    meals: Dict[str, MealStatus]
    summary: Dict[str, int]


class MealCounts(BaseModel):
    reserved: int = 0
    consumed: int = 0
    cancelled: int = 0


class DailyStats(BaseModel):
    """按餐次统计的成员就餐情况"""
    meal_date: date
    department_id: Optional[str] = None
    categories: Dict[str, MealCounts]
    total: MealCounts
