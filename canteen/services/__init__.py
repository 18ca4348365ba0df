"""
Business logic services.
Contains service layer implementations for core business operations.
"""

from dataclasses import dataclass
from typing import Optional

from ..core.clock import Clock, SystemClock
from ..core.database import DatabaseManager
from .audit_service import AuditService
from .badge_service import BadgeService
from .confirmation_service import ConfirmationService
from .directory import Directory, InMemoryDirectory, MenuCatalog, TableDirectory
from .reservation_service import ReservationService


@dataclass
class ServiceContainer:
    """一组共享同一数据库、目录和时钟的服务实例"""
    db: DatabaseManager
    clock: Clock
    reservations: ReservationService
    confirmations: ConfirmationService
    audit: AuditService
    badges: BadgeService


def build_services(db: DatabaseManager, directory: Directory, clock: Optional[Clock] = None,
                   menu_catalog: Optional[MenuCatalog] = None,
                   history_page_size: int = 100) -> ServiceContainer:
    clock = clock or SystemClock()
    audit = AuditService(db, page_size=history_page_size)
    badges = BadgeService(db, clock)
    return ServiceContainer(
        db=db,
        clock=clock,
        reservations=ReservationService(db, directory, clock, menu_catalog),
        confirmations=ConfirmationService(db, directory, clock, audit, badges),
        audit=audit,
        badges=badges,
    )


__all__ = [
    "AuditService",
    "BadgeService",
    "ConfirmationService",
    "ReservationService",
    "Directory",
    "MenuCatalog",
    "InMemoryDirectory",
    "TableDirectory",
    "ServiceContainer",
    "build_services",
]
