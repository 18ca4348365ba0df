"""
报餐相关数据模型
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from .base import BaseEntity, TimestampMixin


class MealCategory(str, Enum):
    """餐次枚举"""
    BREAKFAST = "breakfast"  # 早餐
    LUNCH = "lunch"          # 午餐
    DINNER = "dinner"        # 晚餐

    @property
    def display_name(self) -> str:
        return _MEAL_NAMES[self]


_MEAL_NAMES = {
    MealCategory.BREAKFAST: "早餐",
    MealCategory.LUNCH: "午餐",
    MealCategory.DINNER: "晚餐",
}


class LifecycleStatus(str, Enum):
    """报餐记录状态"""
    PENDING = "pending"          # 待确认
    CONFIRMED = "confirmed"      # 已确认
    COMPLETED = "completed"      # 已完成
    CANCELLED = "cancelled"      # 已取消

    @property
    def is_terminal(self) -> bool:
        return self in (LifecycleStatus.COMPLETED, LifecycleStatus.CANCELLED)


# 可确认就餐的报餐状态
ELIGIBLE_LIFECYCLE = (LifecycleStatus.PENDING, LifecycleStatus.CONFIRMED)


class ConsumptionStatus(str, Enum):
    """就餐状态"""
    RESERVED = "reserved"    # 已报餐
    CONSUMED = "consumed"    # 已就餐
    CANCELLED = "cancelled"  # 已取消


class ReservationMember(BaseEntity):
    """报餐成员及其就餐状态"""
    person_id: str = Field(..., description="成员ID")
    consumption_status: ConsumptionStatus = Field(..., description="就餐状态")
    consumed_at: Optional[datetime] = Field(None, description="就餐时间（UTC）")


class Reservation(BaseEntity, TimestampMixin):
    """报餐记录"""
    id: int = Field(..., description="报餐ID")
    department_id: str = Field(..., description="部门ID")
    requester_id: str = Field(..., description="报餐人ID")
    members: List[ReservationMember] = Field(..., description="报餐成员（按提交顺序）")
    meal_date: date = Field(..., description="就餐日期")
    meal_category: MealCategory = Field(..., description="餐次")
    lifecycle_status: LifecycleStatus = Field(..., description="报餐状态")
    consumption_status: ConsumptionStatus = Field(..., description="就餐状态")
    consumption_timestamp: Optional[datetime] = Field(None, description="首次就餐确认时间（UTC）")
    menu_id: Optional[str] = Field(None, description="报餐时已发布的菜单ID")
    remark: Optional[str] = Field(None, description="备注")

    @property
    def member_ids(self) -> List[str]:
        return [m.person_id for m in self.members]

    def member(self, person_id: str) -> Optional[ReservationMember]:
        for m in self.members:
            if m.person_id == person_id:
                return m
        return None
