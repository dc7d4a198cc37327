"""
Gateway webhook receiver. Reads the raw body: the signature covers the exact
bytes sent, so the body is verified before any JSON parsing.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from checkout.api.deps import get_webhook_dispatcher
from checkout.schemas.payments import WebhookAck
from checkout.services.auth.client_ip import get_client_ip
from checkout.services.payments.webhooks import WebhookDispatcher, WebhookResultKind

router = APIRouter(prefix="/payments", tags=["webhooks"])

SIGNATURE_HEADER = "X-Razorpay-Signature"
EVENT_ID_HEADER = "X-Razorpay-Event-Id"


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    raw_body = await request.body()
    result = await run_in_threadpool(
        dispatcher.handle,
        raw_body,
        request.headers.get(SIGNATURE_HEADER),
        source_ip=get_client_ip(request),
        event_id=request.headers.get(EVENT_ID_HEADER),
    )
    ack = WebhookAck(
        success=result.kind is not WebhookResultKind.CONFLICT,
        message=result.message,
        event=result.event,
    )
    status_code = 409 if result.kind is WebhookResultKind.CONFLICT else 200
    return JSONResponse(status_code=status_code, content=ack.model_dump())
