"""Request schemas.

Everything that crosses the HTTP boundary is validated here before it
reaches a service: payloads are parsed into typed models, query strings
are checked against closed sets of sort fields and filters, and the
gateway's alternate webhook key spellings are folded into one field.
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

SCHOOL_ID_PATTERN = r'^[0-9a-fA-F]{24}$'

OrderStatusValue = Literal['pending', 'success', 'failed', 'cancelled']
PaymentModeValue = Literal['upi', 'card', 'netbanking', 'wallet', 'bank_transfer', 'pending']
RoleValue = Literal['admin', 'school_admin', 'user']
SortField = Literal['payment_time', 'order_amount', 'status', 'created_at']
SortOrder = Literal['asc', 'desc']

_PASSWORD_RULES = (
    (re.compile(r'[a-z]'), 'one lowercase letter'),
    (re.compile(r'[A-Z]'), 'one uppercase letter'),
    (re.compile(r'\d'), 'one number'),
)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def check_password_strength(value: str) -> str:
    missing = [label for pattern, label in _PASSWORD_RULES if not pattern.search(value)]
    if missing:
        raise ValueError('Password must contain at least ' + ', '.join(missing))
    return value


class Schema(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, allow_inf_nan=False)


# ---------------------------------------------------------------- auth

class RegisterRequest(Schema):
    username: str = Field(min_length=3, max_length=30, pattern=r'^[A-Za-z0-9_]+$')
    email: EmailStr
    password: str = Field(min_length=6)
    role: RoleValue = 'user'
    school_id: Optional[str] = Field(default=None, pattern=SCHOOL_ID_PATTERN)

    @field_validator('email')
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator('password')
    @classmethod
    def strong_password(cls, v: str) -> str:
        return check_password_strength(v)

    @model_validator(mode='after')
    def school_admin_needs_school(self):
        if self.role == 'school_admin' and not self.school_id:
            raise ValueError('school_id is required for school_admin users')
        return self


class LoginRequest(Schema):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator('email')
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class ProfileUpdateRequest(Schema):
    username: Optional[str] = Field(default=None, min_length=3, max_length=30, pattern=r'^[A-Za-z0-9_]+$')
    email: Optional[EmailStr] = None

    @field_validator('email')
    @classmethod
    def lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class ChangePasswordRequest(Schema):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)

    @field_validator('new_password')
    @classmethod
    def strong_password(cls, v: str) -> str:
        return check_password_strength(v)


# ------------------------------------------------------------- payment

class StudentInfo(Schema):
    name: str = Field(min_length=2, max_length=100)
    id: str = Field(min_length=1, max_length=64)
    email: EmailStr

    @field_validator('email')
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class CreatePaymentRequest(Schema):
    school_id: str = Field(pattern=SCHOOL_ID_PATTERN)
    trustee_id: str = Field(pattern=SCHOOL_ID_PATTERN)
    student_info: StudentInfo
    order_amount: float = Field(ge=1)
    currency: Literal['INR', 'USD'] = 'INR'


class VerifyPaymentRequest(Schema):
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)
    custom_order_id: str = Field(min_length=1)


class WebhookOrderInfo(Schema):
    order_id: str = Field(min_length=1)
    order_amount: float = Field(ge=0)
    transaction_amount: float = Field(ge=0)
    status: OrderStatusValue
    gateway: Optional[str] = None
    payment_mode: Optional[PaymentModeValue] = None
    bank_reference: Optional[str] = None
    # the gateway has shipped both spellings of these two keys
    payment_details: Optional[str] = Field(
        default=None, validation_alias=AliasChoices('payment_details', 'payemnt_details'))
    payment_message: Optional[str] = Field(
        default=None, validation_alias=AliasChoices('payment_message', 'Payment_message'))
    payment_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices('payment_id', 'razorpay_payment_id'))
    payment_time: Optional[datetime] = None
    error_message: Optional[str] = None

    @field_validator('order_id', mode='before')
    @classmethod
    def order_id_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator('status', 'payment_mode', mode='before')
    @classmethod
    def lower_enum(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator('payment_time')
    @classmethod
    def utc_payment_time(cls, v: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(v)


class WebhookPayload(Schema):
    status: int
    order_info: WebhookOrderInfo


# -------------------------------------------------------- transactions

class TransactionFilters(Schema):
    status: Optional[OrderStatusValue] = None
    school_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode='before')
    @classmethod
    def blank_means_absent(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v not in ('', None)}
        return data

    @field_validator('date_from', 'date_to')
    @classmethod
    def utc_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(v)

    @model_validator(mode='after')
    def ordered_range(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError('date_from must not be after date_to')
        return self

    @classmethod
    def from_args(cls, args, **overrides):
        data = args.to_dict() if hasattr(args, 'to_dict') else dict(args)
        data.update(overrides)
        return cls.model_validate(data)

    def filters_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'school_id': self.school_id,
            'date_from': self.date_from.isoformat() if self.date_from else None,
            'date_to': self.date_to.isoformat() if self.date_to else None,
            'search': self.search,
        }


class TransactionQuery(TransactionFilters):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort: SortField = 'payment_time'
    order: SortOrder = 'desc'

    def filters_dict(self) -> Dict[str, Any]:
        return dict(super().filters_dict(), sort=self.sort, order=self.order)


class SchoolPath(Schema):
    school_id: str = Field(pattern=SCHOOL_ID_PATTERN)
