"""
人员目录信息（由外部目录服务提供）
"""

from typing import Optional

from pydantic import Field

from .base import BaseEntity


class PersonInfo(BaseEntity):
    person_id: str = Field(..., description="人员ID")
    name: Optional[str] = Field(None, description="姓名")
    department_id: Optional[str] = Field(None, description="所属部门ID")
    active: bool = Field(True, description="是否在职/启用")
