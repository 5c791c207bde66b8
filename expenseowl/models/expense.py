"""
Core Data Models for ExpenseOwl

These models define the records the storage core persists:
1. Expense - a single dated financial transaction
2. RecurringExpense - a rule that generates expenses at a fixed interval
3. Config - categories, currency, month start day and the rule list

DESIGN DECISION: Validation and sanitizing live on the models (Pydantic v2).
A record that exists as a model instance has already passed every check,
so the stores never persist half-valid data.

JSON keys follow the on-disk format (camelCase aliases); Python code uses
snake_case attribute names.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Food",
    "Groceries",
    "Travel",
    "Rent",
    "Utilities",
    "Entertainment",
    "Healthcare",
    "Shopping",
    "Miscellaneous",
    "Income",
)

SUPPORTED_CURRENCIES: tuple[str, ...] = (
    "usd",  # US Dollar
    "eur",  # Euro
    "gbp",  # British Pound
    "jpy",  # Japanese Yen
    "cny",  # Chinese Yuan
    "krw",  # Korean Won
    "inr",  # Indian Rupee
    "rub",  # Russian Ruble
    "brl",  # Brazilian Real
    "zar",  # South African Rand
    "aed",  # UAE Dirham
    "aud",  # Australian Dollar
    "cad",  # Canadian Dollar
    "chf",  # Swiss Franc
    "hkd",  # Hong Kong Dollar
    "bdt",  # Bangladeshi Taka
    "sgd",  # Singapore Dollar
    "thb",  # Thai Baht
    "try",  # Turkish Lira
    "mxn",  # Mexican Peso
    "php",  # Philippine Peso
    "pln",  # Polish Zloty
    "sek",  # Swedish Krona
    "nzd",  # New Zealand Dollar
    "dkk",  # Danish Krone
    "idr",  # Indonesian Rupiah
    "ils",  # Israeli New Shekel
    "vnd",  # Vietnamese Dong
    "myr",  # Malaysian Ringgit
)

DEFAULT_CURRENCY = "usd"
DEFAULT_START_DATE = 1

# Largest magnitude a NUMERIC(10, 2) column holds
MAX_AMOUNT = Decimal("99999999.99")
_CENT = Decimal("0.01")

# Written to JSON as a number, the format existing data files use
Amount = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]

_INVALID_CHARS = re.compile(r"[^\w\s.,\-'!\"]")
_REPEATING_SPACES = re.compile(r"\s+")


# =============================================================================
# SANITIZING
# =============================================================================

def sanitize_string(value: str) -> str:
    """
    Replace unreadable characters with spaces and normalize whitespace.

    Letters and digits in any script are kept, as are whitespace and
    the punctuation . , - ' _ ! "
    """
    sanitized = _INVALID_CHARS.sub(" ", value)
    sanitized = _REPEATING_SPACES.sub(" ", sanitized)
    return sanitized.strip()


def validate_category(category: str) -> str:
    """Sanitize a category name, rejecting names that end up empty."""
    sanitized = sanitize_string(category)
    if not sanitized:
        raise ValueError(
            "category name cannot be empty or contain only invalid characters"
        )
    return sanitized


def validate_amount(value: Decimal, record: str) -> Decimal:
    """
    Check that an amount is storable by every backend.

    Amounts are nonzero, have at most two decimal places and stay within
    MAX_AMOUNT in absolute value.
    """
    if value == 0:
        raise ValueError(f"{record} 'amount' cannot be 0")
    if abs(value) > MAX_AMOUNT:
        raise ValueError(
            f"{record} 'amount' must be at most {MAX_AMOUNT} in absolute value"
        )
    if value != value.quantize(_CENT):
        raise ValueError(
            f"{record} 'amount' cannot have more than 2 decimal places"
        )
    return value


def _clean_tags(tags: list[str]) -> list[str]:
    cleaned: list[str] = []
    for tag in tags:
        sanitized = sanitize_string(tag)
        if sanitized and sanitized not in cleaned:
            cleaned.append(sanitized)
    return cleaned


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class Interval(str, Enum):
    """How far apart two occurrences of a recurring expense are."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# =============================================================================
# EXPENSE
# =============================================================================

class Expense(BaseModel):
    """
    A single financial transaction.

    The sign of the amount encodes direction by convention
    (negative for income). Zero is never a valid amount.

    `id`, `currency` and `date` may be left empty; the store fills them
    from its defaults when the expense is written.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
    )

    id: str = Field(
        default="",
        description="Unique expense ID (generated by the store if empty)"
    )
    recurring_id: str = Field(
        default="",
        alias="recurringID",
        description="ID of the rule that generated this expense, empty if manual"
    )
    name: str = Field(
        ...,
        description="What the money was spent on"
    )
    tags: list[str] = Field(
        default_factory=list,
        description="Free-text tags"
    )
    category: str = Field(
        ...,
        description="Category name"
    )
    amount: Amount = Field(
        ...,
        description="Signed amount, never zero, at most two decimal places"
    )
    currency: str = Field(
        default="",
        description="Currency code (store default if empty)"
    )
    # Declared last: the field name shadows the datetime.date type
    date: Optional[datetime] = Field(
        default=None,
        description="When the expense happened (UTC)"
    )

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        sanitized = sanitize_string(v)
        if not sanitized:
            raise ValueError("expense 'name' cannot be empty")
        return sanitized

    @field_validator("category")
    @classmethod
    def require_category(cls, v: str) -> str:
        if not v:
            raise ValueError("expense 'category' cannot be empty")
        return v

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v: Decimal) -> Decimal:
        return validate_amount(v, "expense")

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.lower()

    @field_validator("tags", mode="before")
    @classmethod
    def null_tags(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("tags")
    @classmethod
    def sanitize_tags(cls, v: list[str]) -> list[str]:
        return _clean_tags(v)

    @field_validator("date")
    @classmethod
    def normalize_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v) if v is not None else None


# =============================================================================
# RECURRING EXPENSE
# =============================================================================

class RecurringExpense(BaseModel):
    """
    A rule that generates a fixed number of expenses.

    The first occurrence is dated `start_date`; each following one is
    one `interval` later. Occurrences are materialized as regular
    expenses carrying the rule ID as `recurring_id`.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
    )

    id: str = Field(
        default="",
        description="Unique rule ID (generated by the store if empty)"
    )
    name: str = Field(..., description="Name given to every generated expense")
    amount: Amount = Field(..., description="Signed amount, never zero")
    currency: str = Field(
        default="",
        description="Currency code (store default if empty)"
    )
    tags: list[str] = Field(default_factory=list)
    category: str = Field(..., description="Category name")
    start_date: datetime = Field(
        ...,
        alias="startDate",
        description="Date of the first occurrence (UTC)"
    )
    interval: Interval = Field(..., description="Distance between occurrences")
    occurrences: int = Field(
        ...,
        description="Total number of occurrences, at least 2"
    )

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        sanitized = sanitize_string(v)
        if not sanitized:
            raise ValueError("recurring expense 'name' cannot be empty")
        return sanitized

    @field_validator("category")
    @classmethod
    def require_category(cls, v: str) -> str:
        if not v:
            raise ValueError("recurring expense 'category' cannot be empty")
        return v

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v: Decimal) -> Decimal:
        return validate_amount(v, "recurring expense")

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.lower()

    @field_validator("tags", mode="before")
    @classmethod
    def null_tags(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("tags")
    @classmethod
    def sanitize_tags(cls, v: list[str]) -> list[str]:
        return _clean_tags(v)

    @field_validator("start_date")
    @classmethod
    def normalize_start_date(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("occurrences")
    @classmethod
    def require_two_occurrences(cls, v: int) -> int:
        if v < 2:
            raise ValueError("at least 2 occurrences required to recur")
        return v


# =============================================================================
# CONFIG
# =============================================================================

class Config(BaseModel):
    """
    Per-store configuration.

    Exactly one Config exists per store. It is created with defaults
    when the store is first opened and afterwards only changed field
    by field.
    """
    model_config = ConfigDict(populate_by_name=True)

    categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CATEGORIES),
        description="Expense categories offered to the user"
    )
    currency: str = Field(
        default=DEFAULT_CURRENCY,
        description="Default currency code"
    )
    start_date: int = Field(
        default=DEFAULT_START_DATE,
        alias="startDate",
        description="Day of month on which a budgeting month starts"
    )
    recurring_expenses: list[RecurringExpense] = Field(
        default_factory=list,
        alias="recurringExpenses",
        description="All recurring expense rules"
    )

    @field_validator("categories", "recurring_expenses", mode="before")
    @classmethod
    def null_lists(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("categories")
    @classmethod
    def sanitize_categories(cls, v: list[str]) -> list[str]:
        return [validate_category(category) for category in v]

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        if v not in SUPPORTED_CURRENCIES:
            raise ValueError(f"invalid currency: {v}")
        return v

    @field_validator("start_date")
    @classmethod
    def validate_start_date(cls, v: int) -> int:
        if v < 1 or v > 31:
            raise ValueError(f"invalid start date: {v}")
        return v

    @classmethod
    def default(cls) -> "Config":
        """Configuration a new store starts with."""
        return cls()
