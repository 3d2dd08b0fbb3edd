# paysys/domains/transactions/models.py

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional

from pydantic import AnyHttpUrl, BaseModel, EmailStr, Field, field_validator, model_validator


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    PIX = "pix"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    FAILED = "FAILED"


class InstallmentMode(str, Enum):
    AVISTA = "AVISTA"
    PARCELADO = "PARCELADO"


# An order id can only be reused once its transaction left these states
ACTIVE_STATUSES = (
    TransactionStatus.PENDING.value,
    TransactionStatus.PROCESSING.value,
    TransactionStatus.APPROVED.value,
)
TERMINAL_STATUSES = (
    TransactionStatus.APPROVED.value,
    TransactionStatus.DECLINED.value,
    TransactionStatus.FAILED.value,
)
CANCELLABLE_STATUSES = (
    TransactionStatus.PENDING.value,
    TransactionStatus.PROCESSING.value,
)

SORTABLE_FIELDS = ("created_at", "amount", "status", "payment_method")
STATS_PERIODS = {"7d": 7, "30d": 30, "90d": 90}

PIX_KEY_PATTERN = r"^[\w@+_.:-]{3,120}$"
MAX_AMOUNT = Decimal("999999.99")
MIN_INSTALLMENTS = 1
MAX_INSTALLMENTS = 24
MAX_EXPIRATION_YEARS_AHEAD = 20


class Customer(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    document: Optional[str] = Field(default=None, pattern=r"^\d{11}$")

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class InstallmentsRequest(BaseModel):
    quantity: int = 1


class InitiatePaymentRequest(BaseModel):
    order_id: str = Field(min_length=1, max_length=50)
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    currency: Literal["BRL", "USD", "EUR"] = "BRL"
    payment_method: PaymentMethod
    customer: Customer
    return_url: AnyHttpUrl
    callback_url: AnyHttpUrl
    recipient_user_id: Optional[str] = None
    recipient_pix_key: Optional[str] = None
    installments: Optional[InstallmentsRequest] = None

    @field_validator("order_id")
    @classmethod
    def strip_order_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Order ID cannot be empty")
        return value

    @field_validator("amount")
    @classmethod
    def two_decimal_places(cls, value: Decimal) -> Decimal:
        if value != value.quantize(Decimal("0.01")):
            raise ValueError("Amount must have at most 2 decimal places")
        return value


class CreditCardPaymentRequest(BaseModel):
    transaction_id: str
    card_id: Optional[str] = None
    card_number: Optional[str] = Field(default=None, pattern=r"^\d{13,19}$")
    card_holder_name: Optional[str] = Field(default=None, min_length=2, max_length=100, pattern=r"^[A-Za-z\s]+$")
    expiration_month: Optional[str] = Field(default=None, pattern=r"^(0[1-9]|1[0-2])$")
    expiration_year: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    cvv: str = Field(pattern=r"^\d{3,4}$")
    save_card: bool = False

    @field_validator("expiration_year")
    @classmethod
    def expiration_year_in_range(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        current_year = datetime.now(timezone.utc).year
        if not current_year <= int(value) <= current_year + MAX_EXPIRATION_YEARS_AHEAD:
            raise ValueError(
                f"Expiration year must be between {current_year} and {current_year + MAX_EXPIRATION_YEARS_AHEAD}"
            )
        return value

    @model_validator(mode="after")
    def card_source(self):
        raw_fields = (self.card_number, self.card_holder_name, self.expiration_month, self.expiration_year)
        if self.card_id is None and not all(raw_fields):
            raise ValueError("Provide either card_id or the full card details")
        if self.card_id is not None and any(raw_fields):
            raise ValueError("card_id cannot be combined with raw card details")
        return self

    def card_fields(self) -> dict:
        return {
            "card_number": self.card_number,
            "card_holder_name": self.card_holder_name,
            "expiration_month": self.expiration_month,
            "expiration_year": self.expiration_year,
            "cvv": self.cvv,
        }


class PixPaymentRequest(BaseModel):
    transaction_id: str
