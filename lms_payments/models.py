import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from lms_payments.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def new_id():
    return str(uuid.uuid4())


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    PURCHASE = "PURCHASE"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    full_name = Column(String, nullable=False, default="")
    phone_number = Column(String, nullable=True)
    balance = Column(Numeric(12, 2), nullable=False, default=0)

    payments = relationship("Payment", back_populates="user")
    transactions = relationship("BalanceTransaction", back_populates="user")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = Column(String, nullable=True)
    fawaterak_invoice_id = Column(String, unique=True, nullable=True)   # gateway invoice key
    fawaterak_invoice_url = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="payments")

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)


class BalanceTransaction(Base):
    __tablename__ = "balance_transactions"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    payment_id = Column(String, ForeignKey("payments.id"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)                  # signed
    type = Column(String, nullable=False)                            # DEPOSIT | PURCHASE
    description = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="transactions")
