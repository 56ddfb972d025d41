# schemas/gl.py
from datetime import date
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models.gl import ACCOUNT_TYPES

JournalSource = Literal["Manual", "Payables", "Receivables", "Payroll",
                        "Inventory", "Fixed Assets", "Banking", "System"]
PeriodStatus = Literal["Open", "Closed", "Locked"]


class AccountCreate(BaseModel):
    code: str = Field(min_length=1, max_length=16)
    name: str = Field(min_length=1, max_length=128)
    type: str  # Asset, Liability, Equity, Revenue, Expense
    account_class: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[int] = None
    currency: str = Field(default="NGN", min_length=3, max_length=3)
    is_active: bool = True
    allow_manual_journals: bool = True

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in ACCOUNT_TYPES:
            raise ValueError(f"type must be one of {list(ACCOUNT_TYPES)}")
        return v

    @field_validator("code", "name")
    @classmethod
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    account_class: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: Optional[bool] = None
    allow_manual_journals: Optional[bool] = None


class JournalLineIn(BaseModel):
    account_id: int
    description: Optional[str] = None
    debit: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    credit: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    entity_id: Optional[str] = None

    @model_validator(mode="after")
    def one_side_only(self):
        if self.debit > 0 and self.credit > 0:
            raise ValueError("a line carries either a debit or a credit, not both")
        if self.debit == 0 and self.credit == 0:
            raise ValueError("a line needs a non-zero debit or credit")
        return self


class JournalBody(BaseModel):
    transaction_date: date
    description: str = Field(min_length=1)
    reference: Optional[str] = None
    source: JournalSource = "Manual"
    source_id: Optional[str] = None
    lines: List[JournalLineIn] = Field(min_length=2)


class JournalCreate(JournalBody):
    # Posted runs the journal through the posting path straight away
    status: Literal["Draft", "Posted"] = "Draft"


class JournalUpdate(JournalBody):
    pass


class JournalReverse(BaseModel):
    reversal_date: Optional[date] = None
    description: Optional[str] = None


class JournalListQuery(BaseModel):
    status: Optional[Literal["Draft", "Posted", "Voided"]] = None
    source: Optional[JournalSource] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    q: Optional[str] = None
    sort: Literal["transaction_date", "journal_number", "created_at",
                  "total_debits", "status"] = "transaction_date"
    order: Literal["asc", "desc"] = "desc"
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)


class PeriodCreate(BaseModel):
    period_name: str = Field(min_length=1, max_length=64)
    start_date: date
    end_date: date
    is_year_end: bool = False
    status: PeriodStatus = "Open"

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class PeriodStatusUpdate(BaseModel):
    status: PeriodStatus


class DateRangeQuery(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class AsOfQuery(BaseModel):
    as_of: Optional[date] = None
