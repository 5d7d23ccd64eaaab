"""
App Schemas

Pydantic models for the festival ledger. Input models validate what callers
send before anything reaches the database, output models are read straight
from ORM rows.
- Contribution -> "contributions"
- Expense -> "expenses"
- Program -> "programs"
"""

from pydantic import BaseModel, Field, EmailStr, constr, field_validator
from typing import Optional, Literal, List
from datetime import datetime

EXPENSE_CATEGORIES = ("Food", "Decoration", "Cultural Event", "Pooja", "Travel", "Miscellaneous")

ExpenseCategory = Literal["Food", "Decoration", "Cultural Event", "Pooja", "Travel", "Miscellaneous"]

NonEmpty = constr(strip_whitespace=True, min_length=1)

# Upper bound on a single amount; keeps year totals finite
MAX_AMOUNT = 1e12

# ----------------------------------------------------------------------------
# Records
# ----------------------------------------------------------------------------
class ContributionIn(BaseModel):
    """
    A villager's contribution
    Collection name: "contributions"
    """
    name: NonEmpty = Field(..., description="Contributor name")
    amount: float = Field(..., gt=0, le=MAX_AMOUNT, allow_inf_nan=False, description="Positive amount")
    date: Optional[datetime] = Field(None, description="Omitted means stamped by the store")


class ContributionOut(BaseModel):
    id: int
    year: int
    name: str
    amount: float
    date: datetime

    class Config:
        from_attributes = True


class ExpenseIn(BaseModel):
    """
    Festival spending
    Collection name: "expenses"
    """
    reason: NonEmpty = Field(..., description="What the money was spent on")
    amount: float = Field(..., gt=0, le=MAX_AMOUNT, allow_inf_nan=False, description="Positive amount")
    category: ExpenseCategory
    date: datetime = Field(..., description="Date of the expense, may be backdated")


class ExpenseOut(BaseModel):
    id: int
    year: int
    reason: str
    amount: float
    category: ExpenseCategory
    date: datetime

    class Config:
        from_attributes = True


class ProgramIn(BaseModel):
    """
    Cultural program and its budget
    Collection name: "programs"
    """
    name: NonEmpty
    organizer: NonEmpty
    budget: float = Field(0.0, ge=0, le=MAX_AMOUNT, allow_inf_nan=False, description="Budgeted amount, zero when unknown")
    notes: Optional[str] = None


class ProgramPatch(BaseModel):
    """Fields left out of the payload keep their stored value."""
    name: Optional[NonEmpty] = None
    organizer: Optional[NonEmpty] = None
    budget: Optional[float] = Field(None, ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    notes: Optional[str] = None

    class Config:
        extra = "forbid"

    @field_validator("name", "organizer", "budget")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("field cannot be cleared")
        return value

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class ProgramOut(BaseModel):
    id: int
    year: int
    name: str
    organizer: str
    budget: float
    notes: Optional[str] = None

    class Config:
        from_attributes = True

# ----------------------------------------------------------------------------
# Derived figures
# ----------------------------------------------------------------------------
class TotalsSnapshot(BaseModel):
    total_collection: float = 0.0
    total_expenses: float = 0.0
    remaining_balance: float = 0.0
    total_budget: float = 0.0
    budget_status: float = 0.0

    @property
    def budget_surplus(self) -> bool:
        return self.budget_status >= 0


class SummaryRequest(BaseModel):
    """Payload handed to the text generator; numbers stay unformatted."""
    total_collection: float = Field(..., alias="totalCollection")
    total_expenses: float = Field(..., alias="totalExpenses")
    remaining_balance: float = Field(..., alias="remainingBalance")
    event_list: List[str] = Field(default_factory=list, alias="eventList")

    class Config:
        populate_by_name = True


class SummaryOut(BaseModel):
    year: int
    summary: str
    share_url: str


class DashboardOut(BaseModel):
    year: int
    contributions: List[ContributionOut]
    expenses: List[ExpenseOut]
    programs: List[ProgramOut]
    totals: TotalsSnapshot
    is_admin: bool = False

# ----------------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------------
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserRegister(BaseModel):
    name: NonEmpty
    email: EmailStr
    password: str = Field(..., min_length=6)


class UserOut(BaseModel):
    uid: str
    name: str
    email: EmailStr

    class Config:
        from_attributes = True


class IdentityOut(UserOut):
    is_admin: bool = False
