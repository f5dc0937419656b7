from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from shopstock.app.core import config
from shopstock.app.core.logging_config import configure_logging, get_logger
from shopstock.app.db.session import SessionLocal
from shopstock.app.db.models.models_v1 import Product, Shop, Supplier

logger = get_logger("db.seed")

DEMO_PRODUCTS = [
    ("RIZ-5KG", "Riz parfumé 5kg", 40, 10, Decimal("950.00")),
    ("FARINE-1KG", "Farine T55 1kg", 25, 8, Decimal("180.00")),
    ("HUILE-1L", "Huile de tournesol 1L", 12, 6, Decimal("420.00")),
]


def run_seed():
    db = SessionLocal()
    try:
        # 1) Shop par défaut
        shop = db.get(Shop, config.DEFAULT_SHOP_ID)
        if not shop:
            shop = Shop(id=config.DEFAULT_SHOP_ID, name="Boutique", active=True)
            db.add(shop)
            db.commit()

        # 2) Fournisseur de démo
        supplier = db.scalar(
            select(Supplier).where(Supplier.shop_id == shop.id).where(Supplier.name == "Grossiste Central")
        )
        if not supplier:
            db.add(Supplier(shop_id=shop.id, name="Grossiste Central", email="commandes@grossiste.example"))
            db.commit()

        # 3) Produits (stock initial uniquement à la création)
        for sku, name, qty, min_qty, cost in DEMO_PRODUCTS:
            exists = db.scalar(select(Product).where(Product.shop_id == shop.id).where(Product.sku == sku))
            if not exists:
                db.add(
                    Product(
                        shop_id=shop.id,
                        sku=sku,
                        name=name,
                        quantity=qty,
                        min_quantity=min_qty,
                        cost_price=cost,
                    )
                )
        db.commit()

        logger.info("seed ok", extra={"shop_id": shop.id, "products": len(DEMO_PRODUCTS)})
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    run_seed()
