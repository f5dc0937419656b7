"""
Stock ledger.

Seul chemin légal pour modifier ``products.quantity`` :
    - restocking (delta > 0, à la complétion d'une commande)
    - ventes (delta < 0)

Règle :
    UPDATE products
       SET quantity = quantity + :delta
     WHERE id = :id AND quantity + :delta >= 0

Propriétés :
- atomique (un seul UPDATE conditionnel, jamais read-then-write en mémoire)
- pas de lost update : le verrou ligne (Postgres) / verrou d'écriture (SQLite)
  sérialise les ajustements concurrents sur un même produit
- quantité jamais négative : la ligne n'est pas touchée si le delta est refusé
- ne commit pas : la transaction appartient à l'appelant
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.util import identity_key

from shopstock.app.core.logging_config import get_logger
from shopstock.app.db.errors import is_lock_error
from shopstock.app.db.models.models_v1 import Product
from shopstock.services.exceptions import (
    ConcurrencyConflict,
    InsufficientStock,
    InvalidDelta,
    ProductNotFound,
)

logger = get_logger("services.stock_ledger")


def get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def get_quantity(db: Session, product_id: int) -> int:
    """Quantité lue en base (jamais depuis un objet déjà chargé)."""
    qty = db.execute(select(Product.quantity).where(Product.id == product_id)).scalar_one_or_none()
    if qty is None:
        raise ProductNotFound(product_id)
    return int(qty)


def adjust_quantity(db: Session, product_id: int, delta: int) -> int:
    """
    Applique ``delta`` à la quantité du produit et retourne la nouvelle quantité.

    Raises:
        InvalidDelta: delta nul ou non entier.
        ProductNotFound: produit inexistant.
        InsufficientStock: le delta rendrait la quantité négative (rien n'est écrit).
        ConcurrencyConflict: timeout de verrou côté base.
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InvalidDelta(product_id, delta)

    try:
        result = db.execute(
            update(Product)
            .where(Product.id == product_id)
            .where(Product.quantity + delta >= 0)
            .values(quantity=Product.quantity + delta)
            .execution_options(synchronize_session=False)
        )
    except OperationalError as exc:
        if is_lock_error(exc):
            raise ConcurrencyConflict(f"Stock row for product {product_id} is locked, retry") from exc
        raise

    if result.rowcount != 1:
        current = db.execute(select(Product.quantity).where(Product.id == product_id)).scalar_one_or_none()
        if current is None:
            raise ProductNotFound(product_id)
        raise InsufficientStock(product_id, available=int(current), requested=delta)

    # un Product déjà chargé dans la session a maintenant une quantité périmée
    cached = db.identity_map.get(identity_key(Product, product_id))
    if cached is not None:
        db.expire(cached, ["quantity", "updated_at"])

    new_qty = get_quantity(db, product_id)
    logger.debug(
        "stock adjusted",
        extra={"product_id": product_id, "delta": delta, "quantity": new_qty},
    )
    return new_qty


def apply_adjustment(session_factory: sessionmaker[Session], product_id: int, delta: int) -> int:
    """Un ajustement isolé dans sa propre transaction (ex. débit d'une vente)."""
    db = session_factory()
    try:
        qty = adjust_quantity(db, product_id, delta)
        db.commit()
        return qty
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
