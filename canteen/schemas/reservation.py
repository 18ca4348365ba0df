"""
报餐相关的请求/响应模式
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.reservation import MealCategory


class ReservationCreateRequest(BaseModel):
    """报餐提交请求，报餐人为当前登录用户"""
    meal_date: str = Field(..., description="就餐日期 YYYY-MM-DD")
    meal_category: MealCategory = Field(..., description="餐次")
    member_ids: List[str] = Field(..., description="报餐成员ID列表")
    remark: Optional[str] = Field(None, max_length=500, description="备注")


class ReservationCancelRequest(BaseModel):
    """报餐取消请求"""
    reason: Optional[str] = Field(None, max_length=500, description="取消原因")
