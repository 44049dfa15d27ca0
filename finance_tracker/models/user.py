"""
User Models

A user document carries account fields plus the embedded
`expense_summaries` list that the consistency engine maintains.

Passwords never appear in these models in clear text; only the
bcrypt hash is stored, and the public view drops even that.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from finance_tracker.models.expense import MAX_COST_DIGITS, ExpenseSummary, new_object_id


class UserRegistration(BaseModel):
    """Fields accepted when a new account is registered."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name"
    )
    email: EmailStr
    password: str = Field(
        ...,
        min_length=8,
        max_length=256,
    )
    yearly_income: Optional[Decimal] = Field(
        default=None,
        ge=0,
        max_digits=MAX_COST_DIGITS,
        decimal_places=2,
        description="Optional yearly income"
    )

    @field_validator('email')
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        """E-mail uniqueness is case-insensitive."""
        return v.lower()


class User(BaseModel):
    """A stored user document."""

    id: str = Field(default_factory=new_object_id)
    name: str
    email: str
    password_hash: str
    yearly_income: Optional[Decimal] = None
    expense_summaries: list[ExpenseSummary] = Field(default_factory=list)

    def find_summary(self, expense_id: str) -> Optional[ExpenseSummary]:
        for summary in self.expense_summaries:
            if summary.id == expense_id:
                return summary
        return None

    def to_public(self) -> "UserPublic":
        return UserPublic(
            id=self.id,
            name=self.name,
            email=self.email,
            yearly_income=self.yearly_income,
            expense_summaries=list(self.expense_summaries),
        )


class UserPublic(BaseModel):
    """A user as shown to API clients (no password hash)."""

    id: str
    name: str
    email: str
    yearly_income: Optional[Decimal] = None
    expense_summaries: list[ExpenseSummary] = Field(default_factory=list)
