from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lms_payments import payments
from lms_payments.auth import get_current_user_id
from lms_payments.config import Settings, get_settings
from lms_payments.database import get_db
from lms_payments.errors import FawaterakError, GatewayError
from lms_payments.fawaterak import FawaterakClient, get_gateway, plugin_hash_key
from lms_payments.schemas import (
    BalanceResponse,
    InvoiceUpdateRequest,
    PaymentMethodsResponse,
    PaymentRequest,
    PaymentStatusResponse,
)

router = APIRouter()


@router.post("/payment/fawaterak/create")
def create_payment_api(
    request: PaymentRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: FawaterakClient = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    return payments.create_invoice(db, gateway, settings, user_id, request.amount, request.payment_method)


@router.post("/payment/fawaterak/prepare")
def prepare_payment_api(
    request: PaymentRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    payment = payments.open_payment(db, user_id, request.amount, request.payment_method)
    return {"success": True, "paymentId": payment.id}


@router.post("/payment/fawaterak/update-invoice")
def update_invoice_api(
    request: InvoiceUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    payments.attach_invoice(db, user_id, request.payment_id, request.invoice_key)
    return {"success": True}


@router.get("/payment/fawaterak/methods", response_model=PaymentMethodsResponse)
def payment_methods_api(gateway: FawaterakClient = Depends(get_gateway)):
    try:
        methods = gateway.get_payment_methods()
    except FawaterakError:
        raise GatewayError("Failed to fetch payment methods")
    return {"methods": [m._asdict() for m in methods]}


@router.post("/payment/fawaterak/hash")
def plugin_hash_api(
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
):
    hash_key, domain = plugin_hash_key(settings)
    return {"hashKey": hash_key, "domain": domain}


@router.get("/payment/status/{payment_id}", response_model=PaymentStatusResponse)
def payment_status_api(
    payment_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: FawaterakClient = Depends(get_gateway),
):
    return payments.refresh_status(db, gateway, user_id, payment_id)


@router.get("/payment/fawaterak/check/{invoice_key}", response_model=PaymentStatusResponse)
def check_invoice_api(
    invoice_key: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: FawaterakClient = Depends(get_gateway),
):
    return payments.refresh_status_by_invoice_key(db, gateway, user_id, invoice_key)


@router.get("/balance", response_model=BalanceResponse)
def balance_api(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    user, transactions = payments.balance_summary(db, user_id)
    return {"balance": user.balance, "transactions": transactions}
