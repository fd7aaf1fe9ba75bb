#
# draftworx_models.py
#
# Typed records for the Draftworx Cloud API plus the error taxonomy and the
# Result type returned by every API-facing operation.
#
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# ---- Errors ----
class DraftworxError(Exception):
    """Base class for every failure surfaced by the Draftworx integration."""

    reason = "draftworxError"


class ApiError(DraftworxError):
    """Non-success HTTP response from the Draftworx API."""

    reason = "apiError"

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"API Error {status_code}: {body}")


class NotFound(DraftworxError):
    reason = "notFound"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class FrameworkNotFound(DraftworxError):
    reason = "frameworkNotFound"

    def __init__(self, country_code: str):
        self.country_code = country_code
        super().__init__(f"No framework found for country {country_code}")


class NoFinancialYear(DraftworxError):
    reason = "noFinancialYear"

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"No financial year found for client {client_id}")


# ---- Result ----
T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success/failure outcome of an API-facing operation.

    A successful result may still carry ``None`` as its value, e.g. a client
    lookup that found nothing.
    """

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


# ---- Records ----
class DraftworxModel(BaseModel):
    """Base record mapping camelCase API fields onto snake_case attributes.

    Unknown fields are ignored and explicit nulls fall back to the field
    default, so every attribute always holds a value of its declared type.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class Country(DraftworxModel):
    id: str
    code: str
    name: str
    default_financial_year_starting_month: int = Field(ge=1, le=12)
    default_tax_rate: int | float
    has_templates: bool = False
    enable_xbrl: bool = False
    currency_code: str
    currency_symbol: str


class Framework(DraftworxModel):
    id: str
    name: str = ""
    display_name: Optional[str] = None
    description: Optional[str] = None
    active: bool = False
    country_id: Optional[str] = None

    def matches(self, pattern: str) -> bool:
        needle = pattern.lower()
        return needle in (self.display_name or "").lower() or needle in self.name.lower()


class FinancialYear(DraftworxModel):
    id: str
    client_id: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    current: bool = False
    tax_rate: Optional[int | float] = None


class NewFinancialYear(DraftworxModel):
    """Financial year record sent along with a client creation request."""

    start: str
    end: str
    display_end: str = Field(alias="$end")
    current: bool = True
    tax_rate: int | float
    period_type: int = 12
    show_on_ribbon: bool = True
    foreign_currency_average_rate: float = 1
    foreign_currency_spot_rate: float = 1


class Client(DraftworxModel):
    id: str
    name: str = ""
    engagement_name: str = ""
    tax_year: Optional[int] = None
    entity_type: Optional[int] = None
    entity_description: Optional[str] = None
    currency_symbol: Optional[str] = None
    tax_rate: Optional[int | float] = None
    practice_id: Optional[str] = None
    framework_id: Optional[str] = None
    country_id: Optional[str] = None
    country_of_incorporation: Optional[str] = None
    in_balance: bool = False
    deleted: bool = False
    archived: bool = False
    locked: bool = False
    financial_years: List[FinancialYear] = Field(default_factory=list)
    created: Optional[str] = None
    modified: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return not self.deleted and not self.archived

    @property
    def status(self) -> str:
        if self.deleted:
            return "Deleted"
        if self.archived:
            return "Archived"
        if self.locked:
            return "Locked"
        return "Active"

    def current_financial_year(self) -> Optional[FinancialYear]:
        """The financial year flagged current, else the first one listed."""
        for fy in self.financial_years:
            if fy.current:
                return fy
        return self.financial_years[0] if self.financial_years else None


class TrialBalanceEntry(DraftworxModel):
    id: Optional[str] = None
    account: Optional[str] = None
    name: Optional[str] = None
    link: Optional[str] = None
    link_description: Optional[str] = None
    type: Optional[str] = None
    opening_balance: Decimal = Decimal("0")
    adjustments: Decimal = Decimal("0")
    final: Decimal = Decimal("0")

    @field_validator("opening_balance", "adjustments", "final", mode="before")
    @classmethod
    def _exact_money(cls, value: Any) -> Any:
        # Floats go through their shortest repr so 0.1 stays Decimal("0.1")
        if isinstance(value, float):
            return Decimal(str(value))
        return value


class TrialBalanceTotals(DraftworxModel):
    opening_balance: Decimal = Decimal("0")
    adjustments: Decimal = Decimal("0")
    final: Decimal = Decimal("0")

    @classmethod
    def from_entries(cls, entries: List[TrialBalanceEntry]) -> "TrialBalanceTotals":
        return cls(
            opening_balance=sum((e.opening_balance for e in entries), Decimal("0")),
            adjustments=sum((e.adjustments for e in entries), Decimal("0")),
            final=sum((e.final for e in entries), Decimal("0")),
        )


class TrialBalance(DraftworxModel):
    client_id: str
    financial_year_id: str
    entries: List[TrialBalanceEntry] = Field(default_factory=list)

    @property
    def totals(self) -> TrialBalanceTotals:
        return TrialBalanceTotals.from_entries(self.entries)


class Practice(DraftworxModel):
    id: str
    name: str = ""
    email: Optional[str] = None
    telephone: Optional[str] = None
    practice_type: Optional[str] = None


class ClientSummary(DraftworxModel):
    total: int = 0
    active: int = 0
    deleted: int = 0
    by_year: Dict[Optional[int], int] = Field(default_factory=dict)


# ---- Reference data ----
DEFAULT_COUNTRY_CODE = "ZA"

COUNTRIES: Dict[str, Country] = {
    "ZA": Country(
        id="7f52f114-44c3-436e-859a-3988177713cc",
        code="ZA",
        name="South Africa",
        default_financial_year_starting_month=3,
        default_tax_rate=27,
        has_templates=True,
        enable_xbrl=True,
        currency_code="ZAR",
        currency_symbol="R",
    ),
    "UK": Country(
        id="094a2c25-5829-4dbd-9bfb-9086f6f9afb1",
        code="GB",
        name="United Kingdom",
        default_financial_year_starting_month=4,
        default_tax_rate=25,
        has_templates=True,
        enable_xbrl=True,
        currency_code="GBP",
        currency_symbol="£",
    ),
}
