from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar('T')


class ApiResponse(BaseModel, Generic[T]):
    """通用API响应格式"""
    success: bool = Field(True, description="请求是否成功")
    data: Optional[T] = Field(None, description="响应数据")
    message: Optional[str] = Field(None, description="响应消息")


class ErrorBody(BaseModel):
    """错误响应格式"""
    success: bool = Field(False, description="请求失败")
    error_code: str = Field(description="错误码")
    message: str = Field(description="错误消息")
    details: dict = Field(default_factory=dict, description="结构化错误详情")
    retryable: bool = Field(False, description="是否可以整体重试")

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "error_code": "MEMBER_ALREADY_RESERVED",
                "message": "用户 u1 已经报餐，无法重复报餐",
                "details": {"conflicting_ids": ["u1"], "meal_date": "2024-06-02",
                            "meal_category": "lunch"},
                "retryable": False,
            }
        }
    }

