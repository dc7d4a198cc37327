"""
Admin API: payments list and manual reconciliation. Read-mostly; every write
goes through the ledger's apply_outcome.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from checkout.api.deps import get_reconciliation_service
from checkout.db.session import get_db
from checkout.schemas.payments import AdminPaymentItem, AdminPaymentsResponse, PaymentUser
from checkout.services.auth.jwt import require_admin
from checkout.services.payments.ledger import PurchaseLedger, raise_for_result
from checkout.services.payments.reconcile import ReconciliationService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/payments", response_model=AdminPaymentsResponse)
def payments_list(db: Session = Depends(get_db)):
    rows = PurchaseLedger(db).list_with_users()
    items = []
    for purchase, user in rows:
        item = AdminPaymentItem.model_validate(purchase, from_attributes=True)
        if user is not None:
            item.user = PaymentUser.model_validate(user, from_attributes=True)
        items.append(item)
    return AdminPaymentsResponse(total_payments=len(items), data=items)


@router.post("/payments/{order_id}/reconcile")
def payments_reconcile(order_id: str, svc: ReconciliationService = Depends(get_reconciliation_service)):
    result = svc.reconcile_order(order_id)
    if result is None:
        return {"success": True, "status": "pending", "order_id": order_id}
    raise_for_result(result, order_id, result.purchase.payment_id if result.purchase else "")
    return {
        "success": True,
        "status": result.purchase.status,
        "result": result.kind.value,
        "order_id": order_id,
        "payment_id": result.purchase.payment_id,
    }
