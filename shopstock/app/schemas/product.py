from decimal import Decimal

from pydantic import BaseModel, Field


class ProductCreate(BaseModel):
    sku: str | None = Field(default=None, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    quantity: int = Field(default=0, ge=0)
    min_quantity: int = Field(default=0, ge=0)
    cost_price: Decimal | None = Field(default=None, ge=0, max_digits=14, decimal_places=2)


class ProductRead(BaseModel):
    id: int
    shop_id: int
    sku: str | None
    name: str

    quantity: int  # lecture seule : modifié uniquement par le stock ledger
    min_quantity: int
    is_low_stock: bool
    cost_price: Decimal | None

    class Config:
        from_attributes = True
