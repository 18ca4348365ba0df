"""
自定义异常类
提供更精确的错误处理和异常信息

异常分类：
- ValidationError: 输入校验失败（过去日期、空名单、重复成员、格式错误），不应重试
- BusinessLogicError: 业务冲突（已报餐、已确认、不在就餐时间等），携带结构化详情
- DatabaseError / ConcurrencyError: 基础设施临时故障，可整体重试
"""

from typing import Any, Dict, Iterable, List, Optional


class BaseApplicationError(Exception):
    """应用基础异常类"""

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class DatabaseError(BaseApplicationError):
    """数据库相关异常"""
    retryable = True


class ConcurrencyError(BaseApplicationError):
    """并发控制错误"""
    retryable = True


class AuthenticationError(BaseApplicationError):
    """认证相关异常"""

    def __init__(self, message: str = "需要登录"):
        super().__init__(message, "AUTHENTICATION_REQUIRED")


class AuthorizationError(BaseApplicationError):
    """授权相关异常"""

    def __init__(self, message: str = "权限不足"):
        super().__init__(message, "PERMISSION_DENIED")


class ValidationError(BaseApplicationError):
    """数据验证异常"""
    pass


class BusinessLogicError(BaseApplicationError):
    """业务逻辑异常"""
    pass


def _sorted_ids(ids: Iterable[str]) -> List[str]:
    return sorted(set(ids))


# ==================== 校验类错误 ====================

class InvalidInputError(ValidationError):
    """参数格式错误"""

    def __init__(self, message: str, field: str = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, "INVALID_INPUT", details)


class PastDateError(ValidationError):
    """报餐日期早于今天"""

    def __init__(self, meal_date, today):
        self.meal_date = meal_date
        self.today = today
        super().__init__(
            f"不能为过去的日期报餐: {meal_date.isoformat()}",
            "PAST_DATE",
            {"meal_date": meal_date.isoformat(), "today": today.isoformat()},
        )


class EmptyMembersError(ValidationError):
    """报餐名单为空"""

    def __init__(self):
        super().__init__("报餐名单不能为空", "EMPTY_MEMBERS")


class InternalDuplicateError(ValidationError):
    """报餐名单内部存在重复成员"""

    def __init__(self, duplicate_ids: Iterable[str]):
        self.duplicate_ids = _sorted_ids(duplicate_ids)
        super().__init__(
            f"报餐名单中存在重复用户: {', '.join(self.duplicate_ids)}",
            "INTERNAL_DUPLICATE",
            {"duplicate_ids": self.duplicate_ids},
        )


# ==================== 业务冲突类错误 ====================

class PersonNotFoundError(BusinessLogicError):
    """用户不存在或已停用"""

    def __init__(self, person_id: str):
        self.person_id = person_id
        super().__init__(
            f"用户不存在或已被禁用: {person_id}",
            "PERSON_NOT_FOUND",
            {"person_id": person_id},
        )


class MemberNotFoundError(BusinessLogicError):
    """部分报餐成员不存在或状态异常"""

    def __init__(self, missing_ids: Iterable[str]):
        self.missing_ids = _sorted_ids(missing_ids)
        super().__init__(
            f"部分用户不存在或状态异常: {', '.join(self.missing_ids)}",
            "MEMBER_NOT_FOUND",
            {"missing_ids": self.missing_ids},
        )


class CrossDepartmentError(BusinessLogicError):
    """报餐成员不属于报餐人所在部门"""

    def __init__(self, foreign_ids: Iterable[str], department_id: str):
        self.foreign_ids = _sorted_ids(foreign_ids)
        self.department_id = department_id
        super().__init__(
            f"用户 {', '.join(self.foreign_ids)} 不属于本部门，无法为其报餐",
            "CROSS_DEPARTMENT",
            {"foreign_ids": self.foreign_ids, "department_id": department_id},
        )


class MemberAlreadyReservedError(BusinessLogicError):
    """成员在同一日期同一餐次已有报餐"""

    def __init__(self, conflicting_ids: Iterable[str], meal_date, meal_category: str):
        self.conflicting_ids = _sorted_ids(conflicting_ids)
        super().__init__(
            f"用户 {', '.join(self.conflicting_ids)} 已经报餐，无法重复报餐",
            "MEMBER_ALREADY_RESERVED",
            {
                "conflicting_ids": self.conflicting_ids,
                "meal_date": meal_date.isoformat(),
                "meal_category": meal_category,
            },
        )


class ReservationNotFoundError(BusinessLogicError):
    """报餐记录不存在"""

    def __init__(self, reservation_id: int):
        super().__init__(
            "报餐记录不存在", "RESERVATION_NOT_FOUND", {"reservation_id": reservation_id}
        )


class ReservationStateError(BusinessLogicError):
    """报餐记录当前状态不允许该操作"""

    def __init__(self, reservation_id: int, action: str, lifecycle_status: str,
                 consumption_status: str):
        super().__init__(
            f"报餐记录状态为 {lifecycle_status}/{consumption_status}，无法执行 {action}",
            "RESERVATION_STATE_INVALID",
            {
                "reservation_id": reservation_id,
                "action": action,
                "lifecycle_status": lifecycle_status,
                "consumption_status": consumption_status,
            },
        )


class NotReservedError(BusinessLogicError):
    """尚未报餐，无法确认就餐"""

    def __init__(self, person_id: str, **lookup):
        details = {"person_id": person_id}
        details.update({k: v for k, v in lookup.items() if v is not None})
        super().__init__("尚未报餐，无法确认就餐", "NOT_RESERVED", details)


class AlreadyConfirmedError(BusinessLogicError):
    """该成员已确认就餐"""

    def __init__(self, reservation_id: int, person_id: str):
        self.reservation_id = reservation_id
        self.person_id = person_id
        super().__init__(
            "该报餐已确认就餐",
            "ALREADY_CONFIRMED",
            {"reservation_id": reservation_id, "person_id": person_id},
        )


class OutsideMealWindowError(BusinessLogicError):
    """当前时间不在任何就餐时段内"""

    def __init__(self, local_time: str, windows: List[str] = None):
        super().__init__(
            "当前时间不在就餐时间内",
            "OUTSIDE_MEAL_WINDOW",
            {"local_time": local_time, "windows": windows or []},
        )


class TokenInvalidError(BusinessLogicError):
    """二维码/工牌令牌无效、过期或已使用"""

    def __init__(self, reason: str, code: str = None):
        super().__init__(
            f"二维码无效: {reason}",
            "TOKEN_INVALID",
            {"reason": reason, "code": code},
        )


class TokenRevokedError(BusinessLogicError):
    """二维码/工牌令牌已停用"""

    def __init__(self, code: str):
        super().__init__("二维码已停用", "TOKEN_REVOKED", {"code": code})


class PermissionDeniedError(BusinessLogicError):
    """无权对该报餐执行操作"""

    def __init__(self, actor_id: str, reservation_id: Optional[int] = None):
        super().__init__(
            "无权操作该报餐记录",
            "PERMISSION_DENIED",
            {"actor_id": actor_id, "reservation_id": reservation_id},
        )
