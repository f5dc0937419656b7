"""
Types de colonnes partagés + arrondi monétaire.

Tous les montants passent par ``money()`` : Decimal, 2 décimales, ROUND_HALF_UP.
Aucun float n'est stocké.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy import BigInteger, Integer, Numeric

# BIGINT en Postgres, INTEGER en SQLite (sinon pas d'autoincrement rowid)
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

MoneyColumn = Numeric(14, 2)

TWOPLACES = Decimal("0.01")


def money(value) -> Decimal:
    """
    Convertit en Decimal 2 décimales.

    Les floats passent par str() pour éviter 0.1 -> 0.1000000000000000055...
    Lève ValueError si la valeur n'est pas un nombre fini.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not d.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return d.quantize(TWOPLACES, rounding=ROUND_HALF_UP)
