"""
工牌/二维码令牌模型
令牌由外部签发，本服务只做校验
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from .base import BaseEntity


class BadgeStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class BadgeToken(BaseEntity):
    id: int = Field(..., description="令牌ID")
    code: str = Field(..., description="扫码内容")
    person_id: Optional[str] = Field(None, description="个人工牌持有人，场所二维码为空")
    location: Optional[str] = Field(None, description="场所")
    status: BadgeStatus = Field(..., description="状态")
    expires_at: Optional[datetime] = Field(None, description="过期时间（一次性安全令牌）")
    used_at: Optional[datetime] = Field(None, description="使用时间")

    @property
    def is_single_use(self) -> bool:
        """带过期时间的安全令牌只能使用一次"""
        return self.expires_at is not None
