"""
hodos/models/payment.py

Pending payment claims (manual PIX / bank transfer) and the church
registration payload collected for church-tier plans.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr, field_validator, model_validator

from hodos.models.plan import PlanType


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChurchRegistration(BaseModel):
    """Church data submitted with a church-tier payment claim."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    church_name: str
    cnpj: Optional[str] = None
    cpf: Optional[str] = None
    address: str
    responsible_name: str
    responsible_email: EmailStr
    responsible_phone: str

    @field_validator("church_name", "responsible_name")
    @classmethod
    def _min_three_chars(cls, value: str) -> str:
        if len(value) < 3:
            raise ValueError("must have at least 3 characters")
        return value

    @field_validator("address")
    @classmethod
    def _address_length(cls, value: str) -> str:
        if len(value) < 5:
            raise ValueError("address is required")
        return value

    @field_validator("responsible_phone")
    @classmethod
    def _phone_length(cls, value: str) -> str:
        if len(value) < 10:
            raise ValueError("invalid phone number")
        return value

    @model_validator(mode="after")
    def _tax_id_present(self):
        if not (self.cnpj or self.cpf):
            raise ValueError("CNPJ or CPF is required")
        return self


class PendingPayment(BaseModel):
    """
    One payment claim. Status moves pending -> approved | rejected exactly once.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    plan_type: PlanType
    amount: Decimal
    payment_method: str = "pix"
    church_data: Optional[ChurchRegistration] = None
    confirmation_code: str
    status: PaymentStatus
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    @property
    def is_open(self) -> bool:
        return self.status == PaymentStatus.PENDING
