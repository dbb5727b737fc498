"""Pydantic models for customer records, owners, visits, and bulk results.

Attribute names are snake_case; the JSON wire format uses camelCase aliases and
both spellings are accepted on input.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from npatrack.errors import ErrorKind

AMOUNT_FIELDS = (
    "sanction_limit",
    "outstanding_balance",
    "principal_overdue",
    "interest_overdue",
    "net_balance",
)
REQUIRED_TEXT_FIELDS = (
    "account_number",
    "branch",
    "customer_name",
    "product_type",
    "scheme_code",
)
OPTIONAL_TEXT_FIELDS = (
    "record_id",
    "sr_no",
    "provision",
    "anomalies",
    "asset_classification",
    "asset_tagging",
    "contact_no",
    "address",
)
# Columns a partial update may clear with an explicit null.
NULLABLE_UPDATE_FIELDS = ("recovery_date", "recovered_by")
DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%d.%m.%Y", "%Y/%m/%d")
_EXCEL_EPOCH = date(1899, 12, 30)
_BALANCE_TOLERANCE = 0.01


def text_value(value: Any) -> str:
    """Render a cell or JSON value as trimmed text (integral floats lose ``.0``)."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_amount(value: Any) -> float:
    """Coerce ``value`` to a float amount.

    Raises:
        ValueError: If the value is a boolean or cannot be parsed.
    """

    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, (int, float)):
        return float(value)
    text = text_value(value).replace(",", "")
    if not text:
        raise ValueError("amount is required")
    return float(text)


def parse_date(value: Any) -> date:
    """Parse ISO dates, day-first dates, and spreadsheet serial numbers."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _EXCEL_EPOCH + timedelta(days=int(value))
    text = text_value(value)
    if not text:
        raise ValueError("date is required")
    if "T" in text:
        text = text.split("T", 1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    if text.isdigit():
        return _EXCEL_EPOCH + timedelta(days=int(text))
    raise ValueError(f"unrecognised date '{text}'")


def describe_validation_errors(errors: Iterable[Mapping[str, Any]]) -> str:
    """Flatten pydantic error dicts into one ``field: message`` string."""

    parts = []
    for error in errors:
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Role(str, Enum):
    """Access roles recognised by the API."""

    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"


class GeoPoint(CamelModel):
    """A captured coordinate in a record's location history."""

    lat: float
    lng: float
    captured_at: datetime
    captured_by: str | None = None


class CustomerPayload(CamelModel):
    """Validated candidate for create and upsert operations."""

    record_id: str = ""
    account_number: str
    sr_no: str = ""
    branch: str
    customer_name: str
    product_type: str
    scheme_code: str
    sanction_limit: float
    date_of_npa: date
    outstanding_balance: float
    principal_overdue: float
    interest_overdue: float
    net_balance: float = 0.0
    provision: str = ""
    anomalies: str = "None"
    asset_classification: str = ""
    asset_tagging: str = ""
    contact_no: str = ""
    address: str = ""
    assigned_owner_id: str | None = None
    is_recovered: bool = False
    recovery_date: date | None = None
    recovered_by: str | None = None

    @field_validator(*REQUIRED_TEXT_FIELDS, mode="before")
    @classmethod
    def _require_text(cls, value: Any, info) -> str:
        text = text_value(value)
        if not text:
            raise ValueError(f"{info.field_name} is required")
        return text

    @field_validator(*OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return text_value(value)

    @field_validator(*AMOUNT_FIELDS, mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float:
        return parse_amount(value)

    @field_validator("date_of_npa", mode="before")
    @classmethod
    def _coerce_npa_date(cls, value: Any) -> date:
        return parse_date(value)

    @field_validator("recovery_date", mode="before")
    @classmethod
    def _coerce_recovery_date(cls, value: Any) -> date | None:
        if value is None or text_value(value) == "":
            return None
        return parse_date(value)

    @field_validator("assigned_owner_id", "recovered_by", mode="before")
    @classmethod
    def _blank_owner_is_null(cls, value: Any) -> str | None:
        text = text_value(value)
        return text or None

    @property
    def balance_mismatch(self) -> bool:
        """True when outstanding balance differs from principal plus interest overdue."""

        expected = self.principal_overdue + self.interest_overdue
        return abs(self.outstanding_balance - expected) > _BALANCE_TOLERANCE


class CustomerRecord(CustomerPayload):
    """A persisted customer record with its location history."""

    record_id: str
    location_history: List[GeoPoint] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CustomerUpdate(CamelModel):
    """Partial update for ``PUT /customers/{id}``; unset fields are left alone."""

    sr_no: str | None = None
    branch: str | None = None
    customer_name: str | None = None
    product_type: str | None = None
    scheme_code: str | None = None
    sanction_limit: float | None = None
    date_of_npa: date | None = None
    outstanding_balance: float | None = None
    principal_overdue: float | None = None
    interest_overdue: float | None = None
    net_balance: float | None = None
    provision: str | None = None
    anomalies: str | None = None
    asset_classification: str | None = None
    asset_tagging: str | None = None
    contact_no: str | None = None
    address: str | None = None
    is_recovered: bool | None = None
    recovery_date: date | None = None
    recovered_by: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _reject_null(cls, value: Any, info) -> Any:
        if value is None and info.field_name not in NULLABLE_UPDATE_FIELDS:
            raise ValueError(f"{info.field_name} cannot be null")
        return value

    @field_validator(*AMOUNT_FIELDS, mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        return None if value is None else parse_amount(value)

    @field_validator("date_of_npa", "recovery_date", mode="before")
    @classmethod
    def _coerce_dates(cls, value: Any) -> date | None:
        return None if value is None else parse_date(value)

    @field_validator("branch", "customer_name", "product_type", "scheme_code", mode="after")
    @classmethod
    def _reject_blank(cls, value: str | None, info) -> str | None:
        if value is not None and not value.strip():
            raise ValueError(f"{info.field_name} cannot be blank")
        return value

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class LocationRequest(CamelModel):
    """Body of ``POST /customers/{id}/location``."""

    lat: float
    lng: float

    @field_validator("lat", "lng", mode="before")
    @classmethod
    def _require_number(cls, value: Any, info) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{info.field_name} must be a number")
        return float(value)

    @model_validator(mode="after")
    def _validate_range(self) -> "LocationRequest":
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError("lat must be between -90 and 90")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError("lng must be between -180 and 180")
        return self


class Owner(CamelModel):
    """An account that records can be assigned to."""

    owner_id: str
    username: str
    role: Role = Role.USER
    branch: str = ""
    created_at: datetime | None = None


class OwnerCreate(CamelModel):
    owner_id: str | None = None
    username: str = Field(min_length=1)
    role: Role = Role.USER
    branch: str = ""


class VisitCreate(CamelModel):
    """Field visit submitted by an agent."""

    record_id: str = Field(min_length=1)
    feedback_text: str = Field(min_length=1)
    image_url: str | None = None
    lat: float | None = None
    lng: float | None = None
    visit_date: datetime | None = None


class Visit(VisitCreate):
    visit_id: str
    owner_id: str
    visit_date: datetime


class FailedEntry(CamelModel):
    """One rejected candidate from a bulk upsert."""

    customer: Dict[str, Any]
    reason: str
    kind: ErrorKind = ErrorKind.VALIDATION


class BulkUpsertResult(CamelModel):
    """Outcome of :class:`~npatrack.services.customers.bulk.BulkUpsertEngine.run`."""

    status: Literal["complete", "partial"] = "complete"
    success_count: int = 0
    failed_count: int = 0
    failed_entries: List[FailedEntry] = Field(default_factory=list)
    customer_ids: List[str] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.failed_entries


class AssignmentRequest(CamelModel):
    """Body of ``POST /customers/assign``."""

    user_id: str = Field(min_length=1)
    customer_ids: List[str] = Field(min_length=1)
    reassign: bool = False


class BranchAssignmentRequest(CamelModel):
    """Body of ``POST /customers/assign-branch``."""

    user_id: str = Field(min_length=1)
    branch: str = Field(min_length=1)
    reassign: bool = False


class AssignmentResult(CamelModel):
    message: str
    modified_count: int
    matched_count: int


class CustomerPage(CamelModel):
    """One page of ``GET /customers``."""

    customers: List[CustomerRecord]
    total_pages: int
    current_page: int
    total_customers: int


class SummaryStats(CamelModel):
    total_customers: int
    total_outstanding: float
    total_recovered: float
    recovered_count: int


class ImportPreview(CamelModel):
    """Normalized spreadsheet rows that are still free to assign."""

    customers: List[Dict[str, Any]]
    branches: List[str]
    dropped_assigned: int


__all__ = [
    "AMOUNT_FIELDS",
    "AssignmentRequest",
    "AssignmentResult",
    "BranchAssignmentRequest",
    "BulkUpsertResult",
    "CamelModel",
    "CustomerPage",
    "CustomerPayload",
    "CustomerRecord",
    "CustomerUpdate",
    "FailedEntry",
    "GeoPoint",
    "ImportPreview",
    "LocationRequest",
    "Owner",
    "OwnerCreate",
    "Role",
    "SummaryStats",
    "Visit",
    "VisitCreate",
    "describe_validation_errors",
    "parse_amount",
    "parse_date",
    "text_value",
]
