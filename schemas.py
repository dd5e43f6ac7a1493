"""Request payload schemas. Everything is validated here before any write."""

from datetime import date
from typing import Annotated, List, Optional

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from errors import ValidationError
from ledger import whole_cents
from models import GRADES, SECTIONS, FEE_TYPES, FREQUENCIES, PAYMENT_METHODS

THEMES = ['light', 'dark', 'system']


def _one_of(choices, label):
    def check(value):
        if value not in choices:
            raise ValueError(f"{label} must be one of {', '.join(choices)}")
        return value
    return check


Grade = Annotated[str, AfterValidator(_one_of(GRADES, 'Grade'))]
Section = Annotated[str, AfterValidator(_one_of(SECTIONS, 'Section'))]
FeeType = Annotated[str, AfterValidator(_one_of(FEE_TYPES, 'Fee type'))]
Frequency = Annotated[str, AfterValidator(_one_of(FREQUENCIES, 'Frequency'))]
PaymentMethod = Annotated[str, AfterValidator(_one_of(PAYMENT_METHODS, 'Payment method'))]
Theme = Annotated[str, AfterValidator(_one_of(THEMES, 'Theme'))]


def _in_cents(value):
    if not whole_cents(value):
        raise ValueError('Amount must be in whole cents')
    return value


def _not_null(cls, value):
    if value is None:
        raise ValueError('Field may not be null')
    return value


Money = Annotated[float, AfterValidator(_in_cents)]


class Payload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, coerce_numbers_to_str=True,
                              allow_inf_nan=False)


class StudentIn(Payload):
    admission_number: str = Field(..., min_length=1)
    student_name: str = Field(..., min_length=1)
    grade: Grade
    section: Section = 'A'
    roll_number: int = Field(0, ge=0)
    parent_name: str = Field(..., min_length=1)
    contact_number: str = Field(..., min_length=1)
    email: Optional[str] = None
    fee_category: str = 'Regular'
    transportation_route_id: Optional[int] = None
    pickup_point: Optional[str] = None
    admission_date: date = Field(default_factory=date.today)


class StudentUpdate(Payload):
    admission_number: Optional[str] = Field(None, min_length=1)
    student_name: Optional[str] = Field(None, min_length=1)
    grade: Optional[Grade] = None
    section: Optional[Section] = None
    roll_number: Optional[int] = Field(None, ge=0)
    parent_name: Optional[str] = Field(None, min_length=1)
    contact_number: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = None
    fee_category: Optional[str] = None
    transportation_route_id: Optional[int] = None
    pickup_point: Optional[str] = None
    admission_date: Optional[date] = None

    not_null = field_validator('admission_number', 'student_name', 'grade', 'section',
                               'roll_number', 'parent_name', 'contact_number', 'fee_category',
                               'admission_date', mode='before')(_not_null)


class FeeStructureIn(Payload):
    grade: Grade
    fee_type: FeeType
    amount: Money = Field(..., ge=0)
    frequency: Frequency
    due_day: Optional[int] = Field(None, ge=1, le=31)


class FeeStructureUpdate(Payload):
    grade: Optional[Grade] = None
    fee_type: Optional[FeeType] = None
    amount: Optional[Money] = Field(None, ge=0)
    frequency: Optional[Frequency] = None
    due_day: Optional[int] = Field(None, ge=1, le=31)

    not_null = field_validator('grade', 'fee_type', 'amount', 'frequency', mode='before')(_not_null)


class RouteIn(Payload):
    route_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    distance: Optional[float] = Field(None, ge=0)
    fare: Money = Field(..., ge=0)
    is_active: bool = True


class RouteUpdate(Payload):
    route_name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    distance: Optional[float] = Field(None, ge=0)
    fare: Optional[Money] = Field(None, ge=0)
    is_active: Optional[bool] = None

    not_null = field_validator('route_name', 'fare', 'is_active', mode='before')(_not_null)


class GenerateDuesIn(Payload):
    student_id: int


class ReceiptLineIn(Payload):
    fee_due_id: int
    amount: Money = Field(..., gt=0)


class ReceiptIn(Payload):
    student_id: int
    payment_method: PaymentMethod
    receipt_date: Optional[date] = None
    payment_reference: Optional[str] = None
    remarks: Optional[str] = None
    receipt_number: Optional[str] = None
    items: List[ReceiptLineIn] = Field(..., min_length=1)


class SettingsUpdate(Payload):
    school_name: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    principal_name: Optional[str] = None
    logo: Optional[str] = None
    receipt_prefix: Optional[str] = None
    academic_year: Optional[str] = None
    current_term: Optional[str] = None
    enable_email_notifications: Optional[bool] = None
    enable_sms_notifications: Optional[bool] = None
    enable_automatic_reminders: Optional[bool] = None
    reminder_days: Optional[int] = Field(None, ge=0)
    tax_percentage: Optional[float] = Field(None, ge=0, le=100)
    receipt_footer_text: Optional[str] = None
    receipt_copies: Optional[int] = Field(None, ge=1)
    theme: Optional[Theme] = None

    not_null = field_validator('school_name', 'enable_email_notifications', 'enable_sms_notifications',
                               'enable_automatic_reminders', 'reminder_days', 'tax_percentage',
                               'receipt_copies', 'theme', mode='before')(_not_null)


class LoginIn(Payload):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


def parse_model(schema, data):
    try:
        return schema.model_validate(data or {})
    except pydantic.ValidationError as exc:
        raise ValidationError(errors=[
            {'field': '.'.join(str(part) for part in error['loc']), 'message': error['msg']}
            for error in exc.errors()
        ])


def parse(schema, data, partial=False):
    """Validate ``data`` against ``schema`` and return a dict of fields.

    With ``partial`` only the fields actually sent are returned, so updates
    merge instead of overwriting with defaults.
    """
    return parse_model(schema, data).model_dump(exclude_unset=partial)
