"""
Order data models for the Orders Service.

``OrderRecord`` is the cached entity. It round-trips through JSON with
camelCase keys (``to_dict`` / ``from_dict``) so cached payloads and store rows
share one shape.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.errors import ValidationError


class PaymentStatus(str, Enum):
    """Order payment status."""
    PENDING = "pending"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: str) -> "PaymentStatus":
        """Parse a status, accepting ``paid`` as an alias of ``completed``."""
        normalized = (value or "").strip().lower()
        if normalized == "paid":
            return cls.COMPLETED
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                "Invalid payment status",
                details={"paymentStatus": value, "allowed": [s.value for s in cls]}
            )


class PaymentType(str, Enum):
    """How a completed order was paid."""
    CASH = "Cash"
    CARD = "Card"
    UPI = "UPI"
    CHEQUE = "Cheque"
    BANK_TRANSFER = "Bank Transfer"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PaymentType":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                "Invalid payment type",
                details={"paymentType": value, "allowed": [t.value for t in cls]}
            )


def parse_amount(value: Any, field_name: str) -> Decimal:
    """Parse a non-negative monetary amount."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number", details={field_name: value})
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field_name} must be a non-negative number", details={field_name: value})
    return amount


def format_amount(amount: Decimal) -> str:
    """Render an amount without a trailing exponent (``Decimal('8E+1')`` -> ``'80'``)."""
    return format(amount, "f")


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class EyeMeasurement:
    """Sphere/cylinder/axis readings for both eyes."""
    right_sph: Optional[str] = None
    right_cyl: Optional[str] = None
    right_axis: Optional[str] = None
    left_sph: Optional[str] = None
    left_cyl: Optional[str] = None
    left_axis: Optional[str] = None

    _KEYS = {
        "right_sph": "rightSph",
        "right_cyl": "rightCyl",
        "right_axis": "rightAxis",
        "left_sph": "leftSph",
        "left_cyl": "leftCyl",
        "left_axis": "leftAxis",
    }

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {alias: getattr(self, name) for name, alias in self._KEYS.items()}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EyeMeasurement":
        data = data or {}
        return cls(**{name: data.get(alias) for name, alias in cls._KEYS.items()})


@dataclass
class Prescription:
    """Distance and near prescription embedded in an order."""
    dist: EyeMeasurement = field(default_factory=EyeMeasurement)
    near: EyeMeasurement = field(default_factory=EyeMeasurement)
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"dist": self.dist.to_dict(), "near": self.near.to_dict(), "notes": self.notes}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Prescription":
        data = data or {}
        return cls(
            dist=EyeMeasurement.from_dict(data.get("dist")),
            near=EyeMeasurement.from_dict(data.get("near")),
            notes=data.get("notes"),
        )


# Python attribute -> JSON key for the scalar order fields
ORDER_FIELD_ALIASES = {
    "id": "_id",
    "branch_id": "branchId",
    "bill_no": "billNo",
    "salesman_id": "salesmanId",
    "name": "name",
    "contact": "contact",
    "date": "date",
    "frame": "frame",
    "glass": "glass",
    "contact_lens": "contactLens",
    "frame_price": "framePrice",
    "glass_price": "glassPrice",
    "contact_lens_price": "contactLensPrice",
    "total": "total",
    "advance": "advance",
    "balance": "balance",
    "payment_status": "paymentStatus",
    "payment_type": "paymentType",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

COMPONENT_PRICE_FIELDS = ("frame_price", "glass_price", "contact_lens_price")

# Cannot be cleared by an update
REQUIRED_ORDER_FIELDS = ("name", "contact", "date", "total", "advance")


@dataclass
class OrderRecord:
    """A billed optics order owned by one branch."""
    id: str
    branch_id: str
    bill_no: int
    name: str
    contact: str
    date: str
    total: str
    advance: str = "0"
    balance: str = "0"
    salesman_id: Optional[str] = None
    frame: Optional[str] = None
    glass: Optional[str] = None
    contact_lens: Optional[str] = None
    frame_price: Optional[str] = None
    glass_price: Optional[str] = None
    contact_lens_price: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_type: Optional[PaymentType] = None
    prescription: Prescription = field(default_factory=Prescription)
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the JSON-compatible wire shape."""
        data: Dict[str, Any] = {}
        for name, alias in ORDER_FIELD_ALIASES.items():
            value = getattr(self, name)
            if isinstance(value, Enum):
                value = value.value
            data[alias] = value
        data["prescription"] = self.prescription.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderRecord":
        """Rebuild a record from ``to_dict`` output."""
        kwargs = {name: data.get(alias) for name, alias in ORDER_FIELD_ALIASES.items() if alias in data}
        kwargs["bill_no"] = int(kwargs["bill_no"])
        kwargs["payment_status"] = PaymentStatus(kwargs.get("payment_status") or PaymentStatus.PENDING.value)
        if kwargs.get("payment_type"):
            kwargs["payment_type"] = PaymentType(kwargs["payment_type"])
        kwargs["prescription"] = Prescription.from_dict(data.get("prescription"))
        return cls(**kwargs)

    def with_changes(self, **changes) -> "OrderRecord":
        """Return a copy with ``changes`` applied and derived money recomputed."""
        updated = replace(self, **changes)
        if any(name in changes for name in COMPONENT_PRICE_FIELDS):
            updated.total = format_amount(sum_components(updated))
        updated.balance = compute_balance(updated.total, updated.advance)
        return updated


def sum_components(record: Any) -> Decimal:
    """Total of the component prices; missing components count as zero."""
    total = Decimal("0")
    for name in COMPONENT_PRICE_FIELDS:
        value = getattr(record, name)
        if value not in (None, ""):
            total += parse_amount(value, name)
    return total


def compute_balance(total: str, advance: Optional[str]) -> str:
    """``balance = total - advance``; the advance may not exceed the total."""
    total_amount = parse_amount(total, "total")
    advance_amount = parse_amount(advance if advance not in (None, "") else "0", "advance")
    if advance_amount > total_amount:
        raise ValidationError(
            "advance cannot exceed total",
            details={"total": total, "advance": advance}
        )
    return format_amount(total_amount - advance_amount)


class EyeMeasurementModel(BaseModel):
    """Request model for one set of eye readings."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    right_sph: Optional[str] = Field(None, alias="rightSph")
    right_cyl: Optional[str] = Field(None, alias="rightCyl")
    right_axis: Optional[str] = Field(None, alias="rightAxis")
    left_sph: Optional[str] = Field(None, alias="leftSph")
    left_cyl: Optional[str] = Field(None, alias="leftCyl")
    left_axis: Optional[str] = Field(None, alias="leftAxis")


class PrescriptionModel(BaseModel):
    """Request model for a prescription."""
    model_config = ConfigDict(extra="forbid")

    dist: EyeMeasurementModel = Field(default_factory=EyeMeasurementModel)
    near: EyeMeasurementModel = Field(default_factory=EyeMeasurementModel)
    notes: Optional[str] = None

    def to_prescription(self) -> Prescription:
        return Prescription.from_dict(self.model_dump(by_alias=True))


def check_amount_field(value: Any, field_name: str) -> Optional[str]:
    """Pydantic-side amount check; reports through pydantic's own error type."""
    if value is None:
        return value
    try:
        parse_amount(value, field_name)
    except ValidationError as e:
        raise ValueError(e.message)
    return str(value).strip()


class OrderCreateRequest(BaseModel):
    """Request model for creating an order."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    branch_id: str = Field(..., alias="branchId", min_length=1)
    name: str = Field(..., min_length=1)
    contact: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1)
    total: Optional[str] = None
    advance: Optional[str] = None
    salesman_id: Optional[str] = Field(None, alias="salesmanId")
    frame: Optional[str] = None
    glass: Optional[str] = None
    contact_lens: Optional[str] = Field(None, alias="contactLens")
    frame_price: Optional[str] = Field(None, alias="framePrice")
    glass_price: Optional[str] = Field(None, alias="glassPrice")
    contact_lens_price: Optional[str] = Field(None, alias="contactLensPrice")
    prescription: Optional[PrescriptionModel] = None

    @field_validator("total", "advance", "frame_price", "glass_price", "contact_lens_price", mode="before")
    @classmethod
    def _validate_amount(cls, value: Any, info) -> Optional[str]:
        return check_amount_field(value, info.field_name)


class OrderUpdateRequest(BaseModel):
    """Whitelisted partial update of an order.

    Identity, ownership and payment fields are not editable here; payment state
    changes go through the status transition and partial payment operations.
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = Field(None, min_length=1)
    contact: Optional[str] = Field(None, min_length=1)
    date: Optional[str] = Field(None, min_length=1)
    salesman_id: Optional[str] = Field(None, alias="salesmanId")
    frame: Optional[str] = None
    glass: Optional[str] = None
    contact_lens: Optional[str] = Field(None, alias="contactLens")
    frame_price: Optional[str] = Field(None, alias="framePrice")
    glass_price: Optional[str] = Field(None, alias="glassPrice")
    contact_lens_price: Optional[str] = Field(None, alias="contactLensPrice")
    total: Optional[str] = None
    advance: Optional[str] = None
    prescription: Optional[PrescriptionModel] = None

    @field_validator("total", "advance", "frame_price", "glass_price", "contact_lens_price", mode="before")
    @classmethod
    def _validate_amount(cls, value: Any, info) -> Optional[str]:
        return check_amount_field(value, info.field_name)

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly set by the caller, as OrderRecord attribute names."""
        changes = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if name == "prescription" or (value is None and name in REQUIRED_ORDER_FIELDS):
                continue
            changes[name] = value
        if "prescription" in self.model_fields_set and self.prescription is not None:
            changes["prescription"] = self.prescription.to_prescription()
        return changes


class PaymentStatusUpdateRequest(BaseModel):
    """Request model for the pending -> completed transition."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    payment_status: str = Field(..., alias="paymentStatus")
    payment_type: Optional[str] = Field(None, alias="paymentType")
    branch_id: Optional[str] = Field(None, alias="branchId")


class PartialPaymentRequest(BaseModel):
    """Request model for recording an instalment against an order."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    amount: str
    payment_type: Optional[str] = Field(None, alias="paymentType")
    branch_id: Optional[str] = Field(None, alias="branchId")

    @field_validator("amount", mode="before")
    @classmethod
    def _validate_amount(cls, value: Any) -> Optional[str]:
        return check_amount_field(value, "amount")


def records_to_payload(records: List[OrderRecord]) -> List[Dict[str, Any]]:
    return [record.to_dict() for record in records]


def parse_bill_no(value: Any) -> int:
    """Bill numbers are positive integers; numeric strings are accepted."""
    if isinstance(value, int) and not isinstance(value, bool):
        bill_no = value
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        bill_no = int(value.strip())
    else:
        raise ValidationError("Bill number must be numeric", details={"billNo": value})
    if bill_no < 1:
        raise ValidationError("Bill number must be positive", details={"billNo": value})
    return bill_no
