"""
领域数据模型
"""

from .reservation import (
    MealCategory,
    LifecycleStatus,
    ConsumptionStatus,
    Reservation,
)
from .confirmation import (
    ConfirmationChannel,
    ConfirmationLogEntry,
    ConfirmationResult,
    BatchConfirmationResult,
    AuditFilter,
)
from .badge import BadgeStatus, BadgeToken
from .person import PersonInfo

__all__ = [
    "MealCategory",
    "LifecycleStatus",
    "ConsumptionStatus",
    "Reservation",
    "ConfirmationChannel",
    "ConfirmationLogEntry",
    "ConfirmationResult",
    "BatchConfirmationResult",
    "AuditFilter",
    "BadgeStatus",
    "BadgeToken",
    "PersonInfo",
]
