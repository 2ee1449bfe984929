import datetime as dt
import re
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    computed_field,
    model_validator,
)

from installments import MAX_INSTALLMENTS
from models import TransactionType

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _strict_iso_date(value: object) -> object:
    value = _blank_to_none(value)
    if isinstance(value, str) and not _ISO_DATE.match(value.strip()):
        raise ValueError("Invalid date (format: YYYY-MM-DD)")
    return value


IsoDate = Annotated[dt.date, BeforeValidator(_strict_iso_date)]
OptionalIsoDate = Annotated[Optional[dt.date], BeforeValidator(_strict_iso_date)]
OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptionalId = Annotated[Optional[int], BeforeValidator(_blank_to_none)]


class ProjectIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: OptionalText = None
    start_date: OptionalIsoDate = None
    end_date: OptionalIsoDate = None

    @model_validator(mode="after")
    def _check_range(self) -> "ProjectIn":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("Start date must be before end date")
        return self


class CategoryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class TransactionUpdateIn(BaseModel):
    """Editable fields of a single transaction row; never re-splits."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    date: IsoDate
    type: TransactionType
    project_id: OptionalId = None
    category_id: int


class TransactionIn(TransactionUpdateIn):
    installments: Optional[int] = Field(default=None, ge=1, le=MAX_INSTALLMENTS)


class ProjectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    start_date: Optional[dt.date]
    end_date: Optional[dt.date]


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    amount_cents: int
    date: dt.date
    type: TransactionType
    project_id: Optional[int]
    category_id: int
    installment_group_id: Optional[str]
    installment_number: Optional[int]
    total_installments: Optional[int]
    project: Optional[ProjectOut] = None
    category: Optional[CategoryOut] = None

    @computed_field
    @property
    def amount(self) -> float:
        return self.amount_cents / 100
