from datetime import datetime
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, Field, ConfigDict


class ExchangeStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    COMPLETED = "completed"


class TransitStatus(str, Enum):
    SHIPPING = "shipping"
    RECEIVED = "received"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({ExchangeStatus.DECLINED, ExchangeStatus.COMPLETED})


class CreditType(str, Enum):
    EXCHANGE_CREDIT = "exchange_credit"


class Actor(BaseModel):
    """Identity handed over by the session layer; never verified here."""
    id: str
    email: Optional[str] = None
    is_admin: bool = False


class ShippingDetails(BaseModel):
    carrier_name: str
    tracking_number: str
    shipping_date: datetime
    address: str = ""
    notes: str = ""
    submitted_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WarehouseInfo(BaseModel):
    name: str
    address_line1: str
    address_line2: str = ""
    city: str
    state: str
    postal_code: str
    country: str
    contact_person: str = ""
    contact_phone: str = ""

    model_config = ConfigDict(from_attributes=True)

    def formatted_address(self) -> str:
        parts = [
            self.address_line1, self.address_line2, self.city,
            self.state, self.postal_code, self.country,
        ]
        return ", ".join(p for p in parts if p)


class Warehouse(BaseModel):
    id: str
    name: str
    address_line1: str
    address_line2: str = ""
    city: str
    state: str
    postal_code: str
    country: str
    contact_person: str = ""
    contact_phone: str = ""
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def snapshot(self) -> WarehouseInfo:
        return WarehouseInfo(**self.model_dump(include=set(WarehouseInfo.model_fields)))


class ExchangeRequest(BaseModel):
    id: str
    owner_id: str
    owner_email: Optional[str] = None
    product_name: str
    description: str
    brand: str
    condition: str
    images: list[str] = Field(default_factory=list)
    status: ExchangeStatus = ExchangeStatus.PENDING
    transit_status: Optional[TransitStatus] = None
    credit_amount: int = Field(default=0, ge=0)
    total_loyalty_points: Optional[int] = None
    credit_currency: Optional[str] = None
    credit_assigned_at: Optional[datetime] = None
    credit_assigned_by: Optional[str] = None
    ledger_customer_id: Optional[str] = None
    ledger_success: Optional[bool] = None
    shipping_details: Optional[ShippingDetails] = None
    warehouse_id: Optional[str] = None
    warehouse_info: Optional[WarehouseInfo] = None
    admin_feedback: str = ""
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def has_credit(self) -> bool:
        return self.credit_amount > 0

    def credit_already_granted(self) -> bool:
        return self.credit_assigned_at is not None and bool(self.ledger_success)


class CreditHistoryEntry(BaseModel):
    id: str
    owner_id: str
    exchange_request_id: str
    amount: int
    currency: str = "INR"
    type: CreditType = CreditType.EXCHANGE_CREDIT
    assigned_by: str
    ledger_success: bool
    ledger_customer_id: Optional[str] = None
    total_loyalty_points: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Inputs. Unknown fields are rejected rather than merged into stored documents.

class CreateExchangeRequest(BaseModel):
    product_name: str
    description: str
    brand: str
    condition: str
    images: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", json_schema_extra={
        "example": {
            "product_name": "Denim jacket",
            "description": "Worn twice, no stains",
            "brand": "Levi's",
            "condition": "like new",
            "images": ["https://cdn.example.com/img/jacket-front.jpg"],
        }
    })


class UpdateExchangeRequest(BaseModel):
    product_name: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    condition: Optional[str] = None
    images: Optional[list[str]] = None

    model_config = ConfigDict(extra="forbid")


class SubmitShippingRequest(BaseModel):
    carrier_name: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_date: Optional[datetime] = None
    address: str = ""
    notes: str = ""

    model_config = ConfigDict(extra="forbid")


class StatusUpdateRequest(BaseModel):
    status: ExchangeStatus
    admin_feedback: Optional[str] = None
    warehouse_id: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class TransitUpdateRequest(BaseModel):
    transit_status: TransitStatus
    admin_note: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class AssignCreditRequest(BaseModel):
    # Validated by the service so that 0, negatives and fractions map to ValidationError.
    credit_amount: Union[int, float]
    feedback: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class CreateWarehouseRequest(BaseModel):
    name: str
    address_line1: str
    address_line2: str = ""
    city: str
    state: str
    postal_code: str
    country: str
    contact_person: str = ""
    contact_phone: str = ""
    is_active: bool = True

    model_config = ConfigDict(extra="forbid")


class UpdateWarehouseRequest(BaseModel):
    name: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    contact_person: Optional[str] = None
    contact_phone: Optional[str] = None
    is_active: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


# Outputs

class AssignCreditResponse(BaseModel):
    request: ExchangeRequest
    history_entry: CreditHistoryEntry
    ledger_success: bool
    message: str


class CustomerPointsResponse(BaseModel):
    amount: int
    currency: str
    ledger_customer_id: Optional[str] = None
    error: Optional[str] = None


class CustomerCheckRequest(BaseModel):
    email: str

    model_config = ConfigDict(extra="forbid")


class CustomerCheckResponse(BaseModel):
    exists: bool
    ledger_customer_id: Optional[str] = None
    message: str
