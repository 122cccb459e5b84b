import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lms_payments.config import Settings, get_settings
from lms_payments.database import get_db
from lms_payments.errors import MalformedNotification
from lms_payments.events import WebhookEvent, verify_signature
from lms_payments.models import PaymentStatus
from lms_payments.payments import handle_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment/fawaterak/webhook")


async def _read_event(request: Request) -> WebhookEvent:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedNotification("Invalid JSON payload")
    if not isinstance(body, dict):
        raise MalformedNotification("Invalid JSON payload")
    return WebhookEvent.from_payload(body)


async def signed_event(request: Request, settings: Settings = Depends(get_settings)) -> WebhookEvent:
    event = await _read_event(request)
    if not event.invoice_key:
        raise MalformedNotification("Missing invoice_key")
    verify_signature(event, settings.fawaterak_api_key)
    logger.info(
        "Webhook %s for invoice %s (status=%s, method=%s)",
        request.url.path, event.invoice_key, event.status, event.payment_method,
    )
    return event


@router.post("")
def general_webhook(event: WebhookEvent = Depends(signed_event), db: Session = Depends(get_db)):
    return handle_webhook(db, event)


@router.post("/paid")
def paid_webhook(event: WebhookEvent = Depends(signed_event), db: Session = Depends(get_db)):
    return handle_webhook(db, event, PaymentStatus.PAID)


@router.post("/failed")
def failed_webhook(event: WebhookEvent = Depends(signed_event), db: Session = Depends(get_db)):
    return handle_webhook(db, event, PaymentStatus.FAILED)


@router.post("/cancelled")
def cancelled_webhook(event: WebhookEvent = Depends(signed_event), db: Session = Depends(get_db)):
    return handle_webhook(db, event, PaymentStatus.CANCELLED)


@router.post("/refund")
def refund_webhook(event: WebhookEvent = Depends(signed_event), db: Session = Depends(get_db)):
    return handle_webhook(db, event, PaymentStatus.REFUNDED)


@router.post("/tokenization")
async def tokenization_webhook(request: Request):
    # Informational only; saved-card tokens are not stored
    event = await _read_event(request)
    logger.info("Tokenization event for invoice %s (method=%s)", event.invoice_key, event.payment_method)
    return {"success": True}
