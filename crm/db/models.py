"""
Pydantic models for persisted CRM data.

Client records are stored as a JSON array with camelCase keys. Models accept
either camelCase (from storage) or snake_case (from Python callers), and every
field has a default so records saved by older versions load cleanly.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from crm.config import settings


def now_utc() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ClientStatus(str, Enum):
    ACTIVE = 'active'
    SUSPENDED = 'suspended'


class WhatsAppStatus(str, Enum):
    UNKNOWN = 'unknown'
    CHECKING = 'checking'
    AVAILABLE = 'available'
    UNAVAILABLE = 'unavailable'


class ClientType(str, Enum):
    A = 'A'
    B = 'B'
    C = 'C'
    D = 'D'


class CRMModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore'
    )

    def to_storage(self) -> dict:
        return self.model_dump(mode='json', by_alias=True)


class FollowUpEntry(CRMModel):
    """A logged call with the client."""

    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=now_utc)

    @field_validator('timestamp')
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Note(CRMModel):
    id: str = Field(default_factory=new_id)
    content: str = ''
    last_updated: datetime = Field(default_factory=now_utc)

    @field_validator('last_updated')
    @classmethod
    def _utc_last_updated(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class FileRecord(CRMModel):
    """Attachment (quote or invoice) stored as base64 content."""

    id: str = Field(default_factory=new_id)
    name: str = ''
    type: str = ''
    size: int = 0
    content: str = ''
    description: str = ''
    upload_date: datetime = Field(default_factory=now_utc)


class Product(CRMModel):
    id: str = Field(default_factory=new_id)
    name: str = ''
    code: str = ''
    price: float = 0.0


class BudgetItem(CRMModel):
    product: Product
    quantity: int = 1


class Budget(CRMModel):
    """
    A quote built from price-list products.

    subtotal is the sum of price x quantity; total applies the percentage
    discount to the subtotal.
    """

    id: str = Field(default_factory=lambda: f"budget-{uuid4()}")
    client_id: str = ''
    client_name: str = ''
    date: datetime = Field(default_factory=now_utc)
    items: List[BudgetItem] = Field(default_factory=list)
    discount: float = 0.0
    subtotal: float = 0.0
    total: float = 0.0

    @classmethod
    def build(
        cls,
        client_id: str,
        client_name: str,
        items: List[BudgetItem],
        discount: float = 0.0
    ) -> 'Budget':
        subtotal = sum(item.product.price * item.quantity for item in items)
        total = subtotal * (1 - discount / 100)
        return cls(
            client_id=client_id,
            client_name=client_name,
            items=items,
            discount=discount,
            subtotal=subtotal,
            total=total
        )


class ClientRecord(CRMModel):
    """
    A client and its follow-up countdown state.

    Invariant: paused_time_left is set if and only if is_paused is True.
    """

    id: str = Field(default_factory=new_id)
    company_name: str = ''
    country_code: str = Field(default_factory=lambda: settings.default_country_code)
    phone_number: str = ''
    industry: str = ''
    rating: int = Field(0, ge=0, le=5)
    follow_ups: List[FollowUpEntry] = Field(default_factory=list)
    quotes: List[FileRecord] = Field(default_factory=list)
    invoices: List[FileRecord] = Field(default_factory=list)
    notes: List[Note] = Field(default_factory=list)
    whats_app_status: WhatsAppStatus = WhatsAppStatus.UNKNOWN
    next_follow_up_date: Optional[datetime] = None
    is_paused: bool = False
    paused_time_left: Optional[int] = None
    status: ClientStatus = ClientStatus.ACTIVE
    budgets: List[Budget] = Field(default_factory=list)
    client_type: Optional[ClientType] = None

    @field_validator('next_follow_up_date', 'client_type', mode='before')
    @classmethod
    def _empty_is_none(cls, value):
        return value or None

    @field_validator('next_follow_up_date')
    @classmethod
    def _utc_follow_up(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @field_validator('paused_time_left', mode='before')
    @classmethod
    def _whole_milliseconds(cls, value):
        if value is None:
            return None
        return max(0, int(value))

    @field_validator('country_code', mode='before')
    @classmethod
    def _default_country_code(cls, value):
        return value or settings.default_country_code

    @field_validator('is_paused', mode='before')
    @classmethod
    def _null_is_false(cls, value):
        return False if value is None else value

    @field_validator('status', 'whats_app_status', mode='before')
    @classmethod
    def _null_is_default(cls, value, info):
        if value:
            return value
        if info.field_name == 'status':
            return ClientStatus.ACTIVE
        return WhatsAppStatus.UNKNOWN

    @model_validator(mode='after')
    def _repair_pause_invariant(self) -> 'ClientRecord':
        if not self.is_paused:
            self.paused_time_left = None
        elif self.paused_time_left is None:
            self.paused_time_left = 0
        return self

    @classmethod
    def new(cls, **fields) -> 'ClientRecord':
        """
        Create a new client with a fresh id and initial follow-up state.

        Any id or follow-up fields passed in are ignored: a new client never
        has a follow-up scheduled.
        """
        for key in ('id', 'next_follow_up_date', 'is_paused',
                    'paused_time_left', 'status', 'budgets',
                    'whats_app_status'):
            fields.pop(key, None)
            fields.pop(to_camel(key), None)
        record = cls(**fields)
        if not record.notes:
            record.notes = [Note()]
        return record

    @property
    def last_call_at(self) -> Optional[datetime]:
        if not self.follow_ups:
            return None
        return self.follow_ups[-1].timestamp
