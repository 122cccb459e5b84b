from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PaymentRequest(CamelModel):
    amount: Decimal
    payment_method: Optional[str] = None


class InvoiceUpdateRequest(CamelModel):
    payment_id: str
    invoice_key: str


class PaymentStatusResponse(CamelModel):
    id: str
    amount: Decimal
    status: str
    payment_method: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaymentMethodResponse(CamelModel):
    id: str
    name: str
    icon: Optional[str] = None
    commission: Any = 0


class PaymentMethodsResponse(CamelModel):
    methods: List[PaymentMethodResponse]


class TransactionResponse(CamelModel):
    id: str
    amount: Decimal
    type: str
    description: str
    created_at: datetime


class BalanceResponse(CamelModel):
    balance: Decimal
    transactions: List[TransactionResponse]
