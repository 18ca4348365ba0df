"""
报餐路由模块
报餐人为当前登录用户，审核和结束报餐需要管理员权限
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...core.error_handler import create_success_response
from ...core.exceptions import AuthorizationError
from ...core.security import CurrentActor, get_current_actor, require_admin
from ...models.reservation import MealCategory
from ...schemas.common import ApiResponse
from ...schemas.reservation import ReservationCancelRequest, ReservationCreateRequest
from ...services import ServiceContainer
from ..dependencies import get_services

router = APIRouter()


@router.post("", response_model=ApiResponse)
def submit_reservation(req: ReservationCreateRequest,
                       actor: CurrentActor = Depends(get_current_actor),
                       services: ServiceContainer = Depends(get_services)):
    """提交报餐"""
    reservation = services.reservations.submit(
        requester_id=actor.person_id,
        meal_date=req.meal_date,
        meal_category=req.meal_category,
        member_ids=req.member_ids,
        remark=req.remark,
    )
    return create_success_response(reservation.model_dump(mode="json"), "报餐成功")


@router.get("", response_model=ApiResponse)
def list_reservations(date: str = Query(..., description="就餐日期 YYYY-MM-DD"),
                      meal_category: Optional[MealCategory] = Query(None, description="餐次"),
                      actor: CurrentActor = Depends(get_current_actor),
                      services: ServiceContainer = Depends(get_services)):
    """按日期查询报餐；普通用户只能看到本部门的报餐"""
    department_id = None
    if not actor.is_admin:
        department_id = services.reservations.directory.resolve_department(actor.person_id)
        if not department_id:
            raise AuthorizationError("当前用户不属于任何部门")
    items = services.reservations.list_reservations(date, meal_category, department_id)
    return create_success_response({
        "items": [r.model_dump(mode="json") for r in items],
        "count": len(items),
    })


@router.get("/{reservation_id}", response_model=ApiResponse)
def get_reservation(reservation_id: int,
                    actor: CurrentActor = Depends(get_current_actor),
                    services: ServiceContainer = Depends(get_services)):
    """报餐详情"""
    reservation = services.reservations.get(reservation_id)
    if not actor.is_admin and actor.person_id != reservation.requester_id \
            and actor.person_id not in reservation.member_ids:
        raise AuthorizationError("无权查看该报餐记录")
    return create_success_response(reservation.model_dump(mode="json"))


@router.post("/{reservation_id}/cancel", response_model=ApiResponse)
def cancel_reservation(reservation_id: int,
                       req: Optional[ReservationCancelRequest] = None,
                       actor: CurrentActor = Depends(get_current_actor),
                       services: ServiceContainer = Depends(get_services)):
    """取消报餐（报餐人或管理员）"""
    if not actor.is_admin:
        current = services.reservations.get(reservation_id)
        if current.requester_id != actor.person_id:
            raise AuthorizationError("只有报餐人或管理员可以取消报餐")
    reservation = services.reservations.cancel(
        reservation_id, actor.person_id, req.reason if req else None
    )
    return create_success_response(reservation.model_dump(mode="json"), "报餐已取消")


@router.post("/{reservation_id}/approve", response_model=ApiResponse)
def approve_reservation(reservation_id: int,
                        actor: CurrentActor = Depends(require_admin),
                        services: ServiceContainer = Depends(get_services)):
    """审核报餐（管理员）"""
    reservation = services.reservations.approve(reservation_id, actor.person_id)
    return create_success_response(reservation.model_dump(mode="json"), "报餐已审核")


@router.post("/{reservation_id}/complete", response_model=ApiResponse)
def complete_reservation(reservation_id: int,
                         actor: CurrentActor = Depends(require_admin),
                         services: ServiceContainer = Depends(get_services)):
    """结束报餐（管理员）"""
    reservation = services.reservations.complete(reservation_id, actor.person_id)
    return create_success_response(reservation.model_dump(mode="json"), "报餐已结束")
