import logging
import secrets
import time
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lms_payments.config import Settings
from lms_payments.errors import (
    FawaterakError,
    GatewayError,
    InvalidAmount,
    InvoiceKeyConflict,
    MalformedNotification,
    PaymentAccessDenied,
    PaymentNotFound,
)
from lms_payments.events import WebhookEvent
from lms_payments.fawaterak import FawaterakClient
from lms_payments.ledger import ApplyResult, apply_status
from lms_payments.models import BalanceTransaction, Payment, PaymentStatus, User

logger = logging.getLogger(__name__)


def _valid_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmount("Invalid amount")
    if not value.is_finite() or value <= 0:
        raise InvalidAmount("Invalid amount")
    return value.quantize(Decimal("0.01"))


def open_payment(db: Session, user_id: str, amount, payment_method: Optional[str] = None) -> Payment:
    amount = _valid_amount(amount)

    user = db.get(User, user_id)
    if user is None:
        raise PaymentNotFound("User not found")

    # Stale pending invoices for the same amount must not be reused
    superseded = db.execute(
        update(Payment)
        .where(
            Payment.user_id == user_id,
            Payment.amount == amount,
            Payment.status == PaymentStatus.PENDING.value,
        )
        .values(status=PaymentStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )
    if superseded.rowcount:
        logger.info("Cancelled %s pending payment(s) of %s for user %s", superseded.rowcount, amount, user_id)

    payment = Payment(
        user_id=user_id,
        amount=amount,
        payment_method=payment_method or None,
        status=PaymentStatus.PENDING.value,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def _invoice_body(settings: Settings, user: User, payment: Payment, payment_method: Optional[str]):
    timestamp = int(time.time() * 1000)
    reference = f"PAY-{payment.id}-{timestamp}-{secrets.token_hex(4)}"

    name_parts = (user.full_name or "").split()
    first_name = name_parts[0] if name_parts else "User"
    last_name = " ".join(name_parts[1:])
    phone = user.phone_number or ""
    base_url = settings.public_url.rstrip("/")

    body = {
        "cartTotal": str(payment.amount),
        "currency": settings.currency,
        "customer": {
            "first_name": first_name,
            "last_name": last_name,
            "phone": phone,
            # Unique per invoice so the gateway never reuses a cached one
            "email": f"{phone or user.id}+{timestamp}@lms.local",
        },
        "cartItems": [
            {"name": f"Balance top-up - {reference}", "price": str(payment.amount), "quantity": 1},
        ],
        "redirectionUrls": {
            "successUrl": f"{base_url}/payment/success?payment={payment.id}",
            "failUrl": f"{base_url}/payment/fail?payment={payment.id}",
            "pendingUrl": f"{base_url}/dashboard/balance?payment={payment.id}&ref={reference}",
        },
        "webhookUrl": f"{base_url}/payment/fawaterak/webhook",
        "payLoad": {
            "paymentId": payment.id,
            "userId": user.id,
            "reference": reference,
        },
    }
    if payment_method:
        body["payment_method_id"] = payment_method
    return body


def _mark_failed(db: Session, payment: Payment):
    db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
        .values(status=PaymentStatus.FAILED.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _store_invoice(db: Session, payment: Payment, invoice_key: Optional[str], invoice_url: Optional[str]):
    if invoice_key:
        owner = db.query(Payment.id).filter(Payment.fawaterak_invoice_id == invoice_key).scalar()
        if owner is not None and owner != payment.id:
            logger.warning(
                "Invoice key %s already belongs to payment %s, not assigning it to %s",
                invoice_key, owner, payment.id,
            )
            invoice_key = None

    payment.fawaterak_invoice_url = invoice_url
    if invoice_key:
        payment.fawaterak_invoice_id = invoice_key
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Invoice key %s was taken concurrently, storing URL only for %s", invoice_key, payment.id)
        payment = db.get(Payment, payment.id)
        payment.fawaterak_invoice_url = invoice_url
        db.commit()


def create_invoice(
    db: Session,
    gateway: FawaterakClient,
    settings: Settings,
    user_id: str,
    amount,
    payment_method: Optional[str] = None,
):
    amount = _valid_amount(amount)
    gateway.ensure_configured()

    payment = open_payment(db, user_id, amount, payment_method)
    user = db.get(User, user_id)

    try:
        link = gateway.create_invoice(_invoice_body(settings, user, payment, payment_method))
    except FawaterakError as exc:
        logger.error(
            "Invoice creation failed for payment %s (status=%s): %s", payment.id, exc.status_code, exc.details
        )
        _mark_failed(db, payment)
        raise GatewayError("Failed to create Fawaterak invoice")

    _store_invoice(db, payment, link.invoice_key, link.invoice_url)
    logger.info("Created invoice %s for payment %s", link.invoice_key, payment.id)

    return {
        "success": True,
        "paymentId": payment.id,
        "invoiceUrl": link.invoice_url,
        "invoiceKey": link.invoice_key,
        "invoiceId": link.invoice_id,
    }


def _owned_payment(db: Session, payment_id: str, user_id: str) -> Payment:
    payment = db.get(Payment, payment_id)
    if payment is None:
        raise PaymentNotFound("Payment not found")
    if payment.user_id != user_id:
        raise PaymentAccessDenied("Unauthorized")
    return payment


def attach_invoice(db: Session, user_id: str, payment_id: str, invoice_key: str) -> Payment:
    payment = _owned_payment(db, payment_id, user_id)

    owner = db.query(Payment.id).filter(Payment.fawaterak_invoice_id == invoice_key).scalar()
    if owner is not None and owner != payment.id:
        raise InvoiceKeyConflict("Invoice key already belongs to another payment")

    payment.fawaterak_invoice_id = invoice_key
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise InvoiceKeyConflict("Invoice key already belongs to another payment")
    db.refresh(payment)
    return payment


def _refresh(db: Session, gateway: FawaterakClient, payment: Payment) -> Payment:
    if payment.payment_status.is_terminal or not payment.fawaterak_invoice_id:
        return payment
    if not gateway.configured:
        return payment

    try:
        details = gateway.get_invoice_details(payment.fawaterak_invoice_id)
    except FawaterakError as exc:
        logger.warning(
            "Status check failed for payment %s (status=%s), returning stored status",
            payment.id, exc.status_code,
        )
        return payment

    apply_status(db, payment, details.status, details.payment_method)
    return payment


def refresh_status(db: Session, gateway: FawaterakClient, user_id: str, payment_id: str) -> Payment:
    payment = _owned_payment(db, payment_id, user_id)
    return _refresh(db, gateway, payment)


def refresh_status_by_invoice_key(db: Session, gateway: FawaterakClient, user_id: str, invoice_key: str) -> Payment:
    payment = db.query(Payment).filter(Payment.fawaterak_invoice_id == invoice_key).first()
    if payment is None:
        raise PaymentNotFound("Payment not found")
    if payment.user_id != user_id:
        raise PaymentAccessDenied("Unauthorized")
    return _refresh(db, gateway, payment)


def _backfill_key(db: Session, payment: Payment, invoice_key: str):
    if payment.fawaterak_invoice_id == invoice_key:
        return
    payment.fawaterak_invoice_id = invoice_key
    try:
        db.commit()
        logger.info("Backfilled invoice key %s onto payment %s", invoice_key, payment.id)
    except IntegrityError:
        db.rollback()
        logger.warning("Could not backfill invoice key %s onto payment %s", invoice_key, payment.id)
    db.refresh(payment)


def resolve_payment(db: Session, event: WebhookEvent) -> Optional[Payment]:
    payment = db.query(Payment).filter(Payment.fawaterak_invoice_id == event.invoice_key).first()
    if payment is not None:
        return payment

    if event.payment_id:
        payment = db.get(Payment, event.payment_id)
        if payment is not None:
            logger.info("Resolved invoice %s through payment id %s", event.invoice_key, payment.id)
            _backfill_key(db, payment, event.invoice_key)
            return payment

    if event.user_id and event.amount is not None:
        payment = (
            db.query(Payment)
            .filter(
                Payment.user_id == event.user_id,
                Payment.amount == event.amount,
                Payment.status == PaymentStatus.PENDING.value,
            )
            .order_by(Payment.created_at.desc())
            .first()
        )
        if payment is not None:
            logger.warning(
                "Resolved invoice %s by amount %s to payment %s of user %s",
                event.invoice_key, event.amount, payment.id, event.user_id,
            )
            _backfill_key(db, payment, event.invoice_key)
            return payment

    return None


def handle_webhook(db: Session, event: WebhookEvent, declared_status=None):
    if not event.invoice_key:
        raise MalformedNotification("Missing invoice_key")

    payment = resolve_payment(db, event)
    if payment is None:
        logger.warning(
            "No payment for invoice %s (amount=%s, metadata=%s)",
            event.invoice_key, event.amount, event.metadata,
        )
        raise PaymentNotFound("Payment not found")

    result: ApplyResult = apply_status(
        db,
        payment,
        declared_status if declared_status is not None else event.status,
        event.payment_method,
        reason=event.reason,
    )
    return {
        "success": True,
        "paymentId": payment.id,
        "status": result.status.value,
        "applied": result.applied,
    }


def balance_summary(db: Session, user_id: str):
    user = db.get(User, user_id)
    if user is None:
        raise PaymentNotFound("User not found")

    transactions = (
        db.query(BalanceTransaction)
        .filter(BalanceTransaction.user_id == user_id)
        .order_by(BalanceTransaction.created_at.desc())
        .all()
    )
    return user, transactions
