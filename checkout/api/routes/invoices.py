import os

from fastapi import APIRouter, Depends, Response

from checkout.api.deps import get_invoice_service
from checkout.services.invoices.service import InvoiceService

router = APIRouter(tags=["invoices"])


@router.get("/invoice/{payment_id}")
def get_invoice(payment_id: str, svc: InvoiceService = Depends(get_invoice_service)) -> Response:
    """Invoice artifact for a paid purchase; generated on first request, immutable afterwards."""
    invoice, content = svc.get_or_create(payment_id)
    ext = os.path.splitext(invoice.path)[1]
    return Response(
        content=content,
        media_type=invoice.content_type,
        headers={
            "Cache-Control": "public, max-age=31536000, immutable",
            "Content-Disposition": f'inline; filename="invoice-{invoice.payment_id}{ext}"',
        },
    )
