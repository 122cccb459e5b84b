from decimal import Decimal

import pytest

from conftest import add_payment, ledger_of, reload, signed
from lms_payments.models import Payment, PaymentStatus, TransactionType, User

WEBHOOK = "/payment/fawaterak/webhook"


def notification(invoice_key="KEY-1", status="paid", **extra):
    payload = {
        "invoice_key": invoice_key,
        "invoice_id": 1001,
        "invoice_status": status,
        "payment_method": "Fawry",
    }
    payload.update(extra)
    return signed(payload)


def test_bad_signature_is_rejected(client, db, user):
    payment = add_payment(db, user.id, invoice_key="KEY-1")
    payload = notification()
    payload["hashKey"] = "0" * 64

    response = client.post(WEBHOOK, json=payload)

    assert response.status_code == 401
    assert response.json()["success"] is False
    assert reload(db, Payment, payment.id).status == "PENDING"
    assert reload(db, User, user.id).balance == Decimal("0")


def test_unsigned_notification_is_rejected(client, db, user):
    add_payment(db, user.id, invoice_key="KEY-1")

    response = client.post(WEBHOOK, json={"invoice_key": "KEY-1", "invoice_status": "paid"})

    assert response.status_code == 401


def test_missing_invoice_key(client):
    response = client.post(WEBHOOK, json={"invoice_status": "paid", "hashKey": "abc"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "detail": "Missing invoice_key"}


@pytest.mark.parametrize("body", [b"{not json", b"[1, 2, 3]"])
def test_invalid_json(client, body):
    response = client.post(WEBHOOK, content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid JSON payload"


def test_paid_by_invoice_key(client, db, user):
    payment = add_payment(db, user.id, "100.00", invoice_key="KEY-1")

    response = client.post(WEBHOOK, json=notification())

    assert response.status_code == 200
    assert response.json() == {"success": True, "paymentId": payment.id, "status": "PAID", "applied": True}
    assert reload(db, User, user.id).balance == Decimal("100.00")
    stored = reload(db, Payment, payment.id)
    assert stored.status == "PAID"
    assert stored.payment_method == "Fawry"

    ledger = ledger_of(db, user.id)
    assert len(ledger) == 1
    assert ledger[0].type == TransactionType.DEPOSIT.value
    assert ledger[0].payment_id == payment.id


def test_duplicate_delivery_credits_once(client, db, user):
    add_payment(db, user.id, "100.00", invoice_key="KEY-1")

    first = client.post(WEBHOOK, json=notification())
    second = client.post(WEBHOOK, json=notification(status="SUCCESS"))

    assert first.json()["applied"] is True
    assert second.status_code == 200
    assert second.json()["applied"] is False
    assert second.json()["status"] == "PAID"
    assert reload(db, User, user.id).balance == Decimal("100.00")
    assert len(ledger_of(db, user.id)) == 1


def test_resolved_by_payment_id_backfills_key(client, db, user):
    payment = add_payment(db, user.id, "80.00")

    response = client.post(WEBHOOK, json=notification(
        invoice_key="KEY-NEW", payLoad={"paymentId": payment.id, "userId": user.id},
    ))

    assert response.status_code == 200
    assert response.json()["paymentId"] == payment.id
    stored = reload(db, Payment, payment.id)
    assert stored.fawaterak_invoice_id == "KEY-NEW"
    assert stored.status == "PAID"

    # Later deliveries resolve through the stored key
    again = client.post(WEBHOOK, json=notification(invoice_key="KEY-NEW"))
    assert again.json()["paymentId"] == payment.id
    assert again.json()["applied"] is False


def test_resolved_by_user_and_amount(client, db, user):
    older = add_payment(db, user.id, "50.00")
    newer = add_payment(db, user.id, "50.00")
    add_payment(db, user.id, "70.00")

    response = client.post(WEBHOOK, json=notification(
        invoice_key="KEY-H", invoice_total="50.00", payLoad={"userId": user.id},
    ))

    assert response.status_code == 200
    assert response.json()["paymentId"] == newer.id
    assert reload(db, Payment, newer.id).fawaterak_invoice_id == "KEY-H"
    assert reload(db, Payment, older.id).status == "PENDING"
    assert reload(db, User, user.id).balance == Decimal("50.00")


def test_amount_match_is_limited_to_named_user(client, db, user, other_user):
    theirs = add_payment(db, other_user.id, "50.00")

    response = client.post(WEBHOOK, json=notification(
        invoice_key="KEY-H", invoice_total="50.00", payLoad={"userId": user.id},
    ))

    assert response.status_code == 404
    assert reload(db, Payment, theirs.id).status == "PENDING"


def test_unknown_invoice(client, db, user):
    response = client.post(WEBHOOK, json=notification(invoice_key="KEY-UNKNOWN"))

    assert response.status_code == 404
    assert response.json() == {"success": False, "detail": "Payment not found"}
    assert ledger_of(db, user.id) == []


def test_cancelled_after_paid_is_ignored(client, db, user):
    payment = add_payment(db, user.id, "100.00", invoice_key="KEY-1")
    client.post(WEBHOOK, json=notification())

    response = client.post(WEBHOOK + "/cancelled", json=notification(status="cancelled"))

    assert response.status_code == 200
    assert response.json()["applied"] is False
    assert reload(db, Payment, payment.id).status == "PAID"
    assert reload(db, User, user.id).balance == Decimal("100.00")


def test_unknown_status_leaves_payment_pending(client, db, user):
    payment = add_payment(db, user.id, invoice_key="KEY-1")

    response = client.post(WEBHOOK, json=notification(status="expired"))

    assert response.status_code == 200
    assert response.json()["applied"] is False
    assert reload(db, Payment, payment.id).status == "PENDING"


def test_paid_endpoint_forces_status(client, db, user):
    payment = add_payment(db, user.id, "40.00", invoice_key="KEY-1")

    response = client.post(WEBHOOK + "/paid", json=notification(status=None))

    assert response.json()["status"] == "PAID"
    assert reload(db, Payment, payment.id).status == "PAID"
    assert reload(db, User, user.id).balance == Decimal("40.00")


def test_failed_endpoint(client, db, user):
    payment = add_payment(db, user.id, invoice_key="KEY-1")

    response = client.post(WEBHOOK + "/failed", json=notification(status="whatever"))

    assert response.json()["status"] == "FAILED"
    assert reload(db, Payment, payment.id).status == "FAILED"
    assert ledger_of(db, user.id) == []


def test_refund_endpoint_reverses_credit(client, db, user):
    payment = add_payment(db, user.id, "100.00", invoice_key="KEY-1")
    client.post(WEBHOOK, json=notification())

    response = client.post(WEBHOOK + "/refund", json=notification(refund_reason="customer request"))

    assert response.status_code == 200
    assert response.json()["status"] == "REFUNDED"
    assert reload(db, Payment, payment.id).status == "REFUNDED"
    assert reload(db, User, user.id).balance == Decimal("0")

    ledger = ledger_of(db, user.id)
    assert sorted(t.amount for t in ledger) == [Decimal("-100.00"), Decimal("100.00")]
    refund = next(t for t in ledger if t.amount < 0)
    assert "customer request" in refund.description

    # Repeated refund is a no-op
    again = client.post(WEBHOOK + "/refund", json=notification())
    assert again.json()["applied"] is False
    assert reload(db, User, user.id).balance == Decimal("0")


def test_refund_of_pending_payment_is_ignored(client, db, user):
    payment = add_payment(db, user.id, invoice_key="KEY-1")

    response = client.post(WEBHOOK + "/refund", json=notification())

    assert response.json()["applied"] is False
    assert reload(db, Payment, payment.id).status == "PENDING"


def test_tokenization_is_acknowledged(client, db, user):
    payment = add_payment(db, user.id, invoice_key="KEY-1")

    response = client.post(WEBHOOK + "/tokenization", json={"invoice_key": "KEY-1", "card_token": "tok_1"})

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert reload(db, Payment, payment.id).status == "PENDING"


def test_non_ascii_hash_is_rejected(client, db, user):
    payment = add_payment(db, user.id, invoice_key="KEY-1")
    payload = notification()
    payload["hashKey"] = "é" * 64

    response = client.post(WEBHOOK, json=payload)

    assert response.status_code == 401
    assert reload(db, Payment, payment.id).status == "PENDING"


@pytest.mark.parametrize("amount", ["NaN", "Infinity"])
def test_non_finite_amount_is_ignored(client, db, user, amount):
    payment = add_payment(db, user.id, "100.00", invoice_key="KEY-1")

    response = client.post(WEBHOOK, json=notification(invoice_total=amount))

    assert response.status_code == 200
    assert response.json()["paymentId"] == payment.id
    assert reload(db, User, user.id).balance == Decimal("100.00")
