"""
就餐确认相关的请求/响应模式
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class SelfConfirmRequest(BaseModel):
    """本人确认请求，person_id 为空时确认当前登录用户"""
    reservation_id: int = Field(..., description="报餐ID")
    person_id: Optional[str] = Field(None, description="就餐人ID")
    note: Optional[str] = Field(None, max_length=500, description="备注")


class AdminConfirmRequest(BaseModel):
    """管理员代确认请求"""
    reservation_id: int = Field(..., description="报餐ID")
    person_id: str = Field(..., description="就餐人ID")
    note: Optional[str] = Field(None, max_length=500, description="备注")


class AdminBatchItem(BaseModel):
    reservation_id: int = Field(..., description="报餐ID")
    person_id: str = Field(..., description="就餐人ID")


class AdminBatchConfirmRequest(BaseModel):
    """批量代确认请求"""
    items: List[AdminBatchItem] = Field(..., min_length=1, max_length=500, description="确认项")
    note: Optional[str] = Field(None, max_length=500, description="备注")


class BadgeConfirmRequest(BaseModel):
    """扫码确认请求，餐次和日期由服务器时间决定"""
    token: str = Field(..., description="扫码内容")
    note: Optional[str] = Field(None, max_length=500, description="备注")
