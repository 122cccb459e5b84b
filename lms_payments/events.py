"""Canonical form of a Fawaterak webhook notification.

Different gateway versions send the same logical fields under different
names. Everything downstream works on ``WebhookEvent`` only.
"""

import hashlib
import hmac
import json
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from lms_payments.errors import InvalidSignature

_KEY_FIELDS = ("invoice_key", "invoiceKey", "key")
_ID_FIELDS = ("invoice_id", "invoiceId")
_STATUS_FIELDS = ("invoice_status", "status", "invoiceStatus", "invoice_status_name")
_AMOUNT_FIELDS = ("invoice_total", "total", "amount", "cartTotal", "invoice_total_amount")
_METHOD_FIELDS = ("payment_method", "paymentMethod", "payment_method_name")
_METADATA_FIELDS = ("payLoad", "payload", "metaData", "metadata", "meta")
_HASH_FIELDS = ("hashKey", "hash_key")
_REASON_FIELDS = ("refund_reason", "failure_reason", "cancellation_reason", "reason")


def _pick(body: Dict[str, Any], names) -> Any:
    for name in names:
        value = body.get(name)
        if value not in (None, ""):
            return value
    return None


def _text(value) -> Optional[str]:
    return None if value is None else str(value)


def _decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def _metadata(value) -> Dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    return value if isinstance(value, dict) else {}


class WebhookEvent(BaseModel):
    invoice_key: Optional[str] = None
    invoice_id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    hash_key: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_payload(cls, body: Dict[str, Any]) -> "WebhookEvent":
        invoice_id = _text(_pick(body, _ID_FIELDS))
        return cls(
            # Some payloads only carry the invoice id
            invoice_key=_text(_pick(body, _KEY_FIELDS)) or invoice_id,
            invoice_id=invoice_id,
            status=_text(_pick(body, _STATUS_FIELDS)),
            amount=_decimal(_pick(body, _AMOUNT_FIELDS)),
            payment_method=_text(_pick(body, _METHOD_FIELDS)),
            metadata=_metadata(_pick(body, _METADATA_FIELDS)),
            hash_key=_text(_pick(body, _HASH_FIELDS)),
            reason=_text(_pick(body, _REASON_FIELDS)),
        )

    @property
    def payment_id(self) -> Optional[str]:
        return _text(_pick(self.metadata, ("paymentId", "payment_id")))

    @property
    def user_id(self) -> Optional[str]:
        return _text(_pick(self.metadata, ("userId", "user_id")))


def signature_for(invoice_id, invoice_key, payment_method, vendor_key: str) -> str:
    message = f"InvoiceId={invoice_id}&InvoiceKey={invoice_key}&PaymentMethod={payment_method}"
    return hmac.new(vendor_key.encode(), message.encode(), hashlib.sha256).hexdigest()


def verify_signature(event: WebhookEvent, vendor_key: Optional[str]):
    if not vendor_key or not event.hash_key:
        raise InvalidSignature("Missing webhook signature")

    expected = signature_for(
        event.invoice_id or "",
        event.invoice_key or "",
        event.payment_method or "",
        vendor_key,
    )
    if not hmac.compare_digest(expected.encode(), event.hash_key.encode()):
        raise InvalidSignature("Invalid webhook signature")
