"""
Checkout routes for signed-in users: create order, verify payment.
"""
from fastapi import APIRouter, Body, Depends, Request

from checkout.api.deps import get_order_service
from checkout.models.user import User
from checkout.schemas.payments import (
    CreateOrderRequest,
    OrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from checkout.services.auth.client_ip import get_client_ip
from checkout.services.auth.jwt import get_current_user
from checkout.services.payments.orders import OrderService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create-order", response_model=OrderResponse)
def create_order(
    body: CreateOrderRequest = Body(...),
    user: User = Depends(get_current_user),
    svc: OrderService = Depends(get_order_service),
):
    return svc.create_order(user.id, body.plan_id, body.coupon_code)


@router.post("/verify-payment", response_model=VerifyPaymentResponse)
def verify_payment(
    request: Request,
    body: VerifyPaymentRequest = Body(...),
    user: User = Depends(get_current_user),
    svc: OrderService = Depends(get_order_service),
):
    return svc.verify_payment(
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
        user_id=user.id,
        source_ip=get_client_ip(request),
    )
