"""
订单路由 - 下单
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, status

from api.dependencies import get_checkout_service
from application.dtos.orders import PlaceOrder
from application.services.checkout_service import CheckoutService
from core.response import success_response


router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", status_code=status.HTTP_201_CREATED, summary="下单")
async def place_order(
    payload: PlaceOrder,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    创建订单并预占库存

    请求头 Idempotency-Key 与请求体 idempotency_key 等价，重复提交返回同一订单。
    """
    if idempotency_key and not payload.idempotency_key:
        payload = payload.model_copy(update={"idempotency_key": idempotency_key})
    view = await service.place_order(payload)
    return success_response(data=view.model_dump(mode="json"), message="Order placed")
