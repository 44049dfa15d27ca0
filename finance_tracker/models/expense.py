"""
Expense Models

An expense lives in two places:
1. The canonical Expense document in the "Expenses" collection
   (source of truth for existence and value)
2. An ExpenseSummary embedded in the owner's user document
   (read-optimization for listing a user's expenses)

Only the consistency engine writes both. These models define the
shapes and the validation rules both copies share.

DESIGN DECISION: Money is Decimal, never float.
Costs are validated to at most two decimal places and stored
quantized to cents so the canonical record and the summary always
compare equal.
"""

from decimal import Decimal
from typing import Annotated, Any

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator


CENTS = Decimal("0.01")

# Keeps quantize() inside the default 28-digit context and the value
# inside Decimal128
MAX_COST_DIGITS = 15

Cost = Annotated[
    Decimal,
    Field(
        ge=0,
        max_digits=MAX_COST_DIGITS,
        decimal_places=2,
        description="Non-negative amount, two-decimal precision",
    ),
]


def new_object_id() -> str:
    """Mint a fresh 24-hex-character identifier."""
    return str(ObjectId())


def quantize_cost(value: Decimal) -> Decimal:
    """Normalize a validated cost to exactly two decimal places."""
    return value.quantize(CENTS)


class ExpenseDraft(BaseModel):
    """
    Caller-supplied fields for a new expense.

    Validated before any storage write happens.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="What the money was spent on"
    )
    cost: Cost

    @field_validator('cost')
    @classmethod
    def normalize_cost(cls, v: Decimal) -> Decimal:
        return quantize_cost(v)


class CostChange(BaseModel):
    """A new cost for an existing expense."""

    cost: Cost

    @field_validator('cost')
    @classmethod
    def normalize_cost(cls, v: Decimal) -> Decimal:
        return quantize_cost(v)


class ExpenseSummary(BaseModel):
    """
    The denormalized copy of an expense embedded in its owner's document.

    Has no identity of its own: `id` is the canonical expense id.
    """

    id: str
    name: str
    cost: Decimal

    def matches(self, expense: "Expense") -> bool:
        """True when this summary mirrors the canonical record exactly."""
        return (
            self.id == expense.id
            and self.name == expense.name
            and self.cost == expense.cost
        )


class Expense(BaseModel):
    """
    The canonical expense record.

    `id` and `owner_id` are immutable once created.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Opaque identifier minted by the engine"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of the owning user"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200
    )
    cost: Cost

    def to_summary(self) -> ExpenseSummary:
        return ExpenseSummary(id=self.id, name=self.name, cost=self.cost)

    def to_log_dict(self) -> dict[str, Any]:
        return {
            "expense_id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "cost": str(self.cost),
        }
