from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from shopstock.app.db.models.core_types import RestockingStatus


class RestockingItemIn(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_cost: Decimal = Field(ge=0, max_digits=14, decimal_places=2)


class RestockingItemEdit(BaseModel):
    quantity: int = Field(gt=0)
    unit_cost: Decimal = Field(ge=0, max_digits=14, decimal_places=2)


class RestockingCreate(BaseModel):
    supplier_id: int | None = None
    notes: str | None = Field(default=None, max_length=2000)
    # pas de min_length : une liste vide doit remonter EmptyOrder
    items: list[RestockingItemIn] = Field(default_factory=list)


class RestockingUpdate(BaseModel):
    """Champs absents = inchangés. ``items`` remplace toutes les lignes."""

    supplier_id: int | None = None
    notes: str | None = Field(default=None, max_length=2000)
    items: list[RestockingItemIn] | None = None


class RestockingTransition(BaseModel):
    status: RestockingStatus


class RestockingItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal

    class Config:
        from_attributes = True


class RestockingOrderRead(BaseModel):
    id: int
    shop_id: int
    reference_number: str
    supplier_id: int | None
    status: RestockingStatus
    notes: str | None
    total_amount: Decimal  # lecture seule : somme des lignes
    created_by: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    cancelled_at: datetime | None
    items: list[RestockingItemRead]

    class Config:
        from_attributes = True


class RestockingSummaryRead(BaseModel):
    total: int
    pending: int
    completed: int
    cancelled: int
    total_value: Decimal

    class Config:
        from_attributes = True
