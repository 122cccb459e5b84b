"""Ledger Applier.

The only code path allowed to move money in or out of a user's balance.
Every transition is a conditional UPDATE on the payment's status column;
the balance change and the ledger row are written only when that UPDATE
matched, and all of it commits together. Duplicate webhooks, repeated
polling and a webhook racing a poll therefore credit at most once.
"""

import logging
from decimal import Decimal
from typing import NamedTuple, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from lms_payments.models import (
    BalanceTransaction,
    Payment,
    PaymentStatus,
    TransactionType,
    User,
)

logger = logging.getLogger(__name__)

_STATUS_TOKENS = {
    "paid": PaymentStatus.PAID,
    "success": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELLED,
    "canceled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.REFUNDED,
    "pending": PaymentStatus.PENDING,
    "unpaid": PaymentStatus.PENDING,
}

# Allowed source states for each declared status
_TRANSITIONS = {
    PaymentStatus.PAID: (PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.CANCELLED),
    PaymentStatus.FAILED: (PaymentStatus.PENDING,),
    PaymentStatus.CANCELLED: (PaymentStatus.PENDING,),
    PaymentStatus.REFUNDED: (PaymentStatus.PAID,),
}


class ApplyResult(NamedTuple):
    applied: bool
    status: PaymentStatus


def normalize_status(raw) -> Optional[PaymentStatus]:
    if raw is None:
        return None
    if isinstance(raw, PaymentStatus):
        return raw
    return _STATUS_TOKENS.get(str(raw).strip().lower())


def apply_status(
    db: Session,
    payment: Payment,
    declared_status,
    declared_method: Optional[str] = None,
    reason: Optional[str] = None,
) -> ApplyResult:
    target = normalize_status(declared_status)
    current = payment.payment_status

    if current is PaymentStatus.PAID and target is PaymentStatus.PAID:
        logger.info("Payment %s already processed", payment.id)
        return ApplyResult(False, current)

    if target not in _TRANSITIONS:
        # Unknown tokens and PENDING leave the intent untouched
        return ApplyResult(False, current)

    sources = _TRANSITIONS[target]
    if current not in sources:
        logger.info(
            "Ignoring %s for payment %s in status %s", target.value, payment.id, current.value
        )
        return ApplyResult(False, current)

    payment_id = payment.id
    user_id = payment.user_id
    amount = Decimal(payment.amount)
    method = declared_method or payment.payment_method

    result = db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status.in_([s.value for s in sources]))
        .values(status=target.value, payment_method=method)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Another request won the race
        db.rollback()
        db.refresh(payment)
        logger.info("Payment %s changed concurrently, now %s", payment_id, payment.status)
        return ApplyResult(False, payment.payment_status)

    if target is PaymentStatus.PAID:
        _move_balance(db, user_id, amount)
        db.add(BalanceTransaction(
            user_id=user_id,
            payment_id=payment_id,
            amount=amount,
            type=TransactionType.DEPOSIT.value,
            description=f"Added {amount} to balance via {method or 'Fawaterak'}",
        ))
    elif target is PaymentStatus.REFUNDED:
        _move_balance(db, user_id, -amount)
        db.add(BalanceTransaction(
            user_id=user_id,
            payment_id=payment_id,
            amount=-amount,
            type=TransactionType.PURCHASE.value,
            description=f"Refund of {amount} - {reason or 'payment refunded'}",
        ))

    db.commit()
    db.refresh(payment)

    logger.info(
        "Payment %s %s -> %s (user=%s, amount=%s)",
        payment_id, current.value, target.value, user_id, amount,
    )
    return ApplyResult(True, target)


def _move_balance(db: Session, user_id: str, delta: Decimal):
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(balance=User.balance + delta)
        .execution_options(synchronize_session=False)
    )
