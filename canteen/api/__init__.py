"""
API routes and endpoints.
"""

from fastapi import APIRouter
from ..schemas.common import ErrorBody
from .v1 import confirmations, reservations

# 业务异常统一返回 ErrorBody
api_router = APIRouter(responses={
    400: {"model": ErrorBody},
    403: {"model": ErrorBody},
    404: {"model": ErrorBody},
    409: {"model": ErrorBody},
})

api_router.include_router(reservations.router, prefix="/reservations", tags=["报餐"])
api_router.include_router(confirmations.router, prefix="/confirmations", tags=["就餐确认"])
