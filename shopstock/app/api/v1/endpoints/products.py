from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from shopstock.app.api.deps import get_db
from shopstock.app.core import config
from shopstock.app.db.models.models_v1 import Product, Shop
from shopstock.app.schemas.product import ProductCreate, ProductRead
from shopstock.services.stock_ledger import get_product

router = APIRouter(prefix="/products")


@router.get("", response_model=list[ProductRead])
def list_products(
    shop_id: int = config.DEFAULT_SHOP_ID,
    low_stock: bool = False,
    db: Session = Depends(get_db),
):
    stmt = select(Product).where(Product.shop_id == shop_id).order_by(Product.name, Product.id)
    if low_stock:
        stmt = stmt.where(Product.quantity <= Product.min_quantity)
    return db.execute(stmt).scalars().all()


@router.get("/{product_id}", response_model=ProductRead)
def read_product(product_id: int, shop_id: int = config.DEFAULT_SHOP_ID, db: Session = Depends(get_db)):
    product = get_product(db, product_id)
    if product.shop_id != shop_id:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.post("", response_model=ProductRead, status_code=201)
def create_product(payload: ProductCreate, shop_id: int = config.DEFAULT_SHOP_ID, db: Session = Depends(get_db)):
    if not db.get(Shop, shop_id):
        raise HTTPException(status_code=400, detail="Invalid shop_id")

    if payload.sku:
        exists = db.execute(
            select(Product).where(Product.shop_id == shop_id).where(Product.sku == payload.sku)
        ).scalar_one_or_none()
        if exists:
            raise HTTPException(status_code=409, detail="SKU already exists")

    # stock initial : seule écriture de quantity hors ledger (le produit n'existe pas encore)
    p = Product(
        shop_id=shop_id,
        sku=payload.sku,
        name=payload.name,
        quantity=payload.quantity,
        min_quantity=payload.min_quantity,
        cost_price=payload.cost_price,
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p
