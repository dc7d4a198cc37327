from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CreateOrderRequest(BaseModel):
    plan_id: str = Field(..., min_length=1, validation_alias="planId")
    coupon_code: str | None = Field(None, validation_alias="couponCode")

    model_config = ConfigDict(populate_by_name=True)


class OrderResponse(BaseModel):
    success: bool = True
    message: str
    order_id: str
    amount: int  # minor units
    currency: str
    purchase_id: str
    plan_name: str
    key_id: str
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class VerifyPaymentResponse(BaseModel):
    success: bool
    message: str
    status: str  # paid / failed / pending
    purchase_id: str
    payment_id: str
    already_applied: bool = False


class WebhookAck(BaseModel):
    success: bool = True
    message: str
    event: str | None = None


class PaymentUser(BaseModel):
    id: str
    full_name: str
    email: str
    role: str
    phone: str | None = None


class AdminPaymentItem(BaseModel):
    id: str
    order_id: str
    payment_id: str | None
    plan_id: str
    plan_name: str
    amount: int
    currency: str
    receipt: str
    status: str
    coupon_used: str | None
    validity: datetime
    failure_reason: str | None
    entitlement_granted_at: datetime | None
    created_at: datetime
    updated_at: datetime
    user: PaymentUser | None = None


class AdminPaymentsResponse(BaseModel):
    success: bool = True
    total_payments: int
    data: list[AdminPaymentItem]
