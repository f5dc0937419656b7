"""
Lignes d'une commande de réapprovisionnement (en mémoire, avant écriture).

Une ligne = (produit, quantité, coût unitaire). Un produit apparaît au plus une
fois par commande : ``add_line`` sur un produit déjà présent est refusé
(DuplicateLine), l'appelant doit passer par ``update_line``.

``total()`` est recalculé à partir des lignes à chaque appel ; c'est cette
valeur, et jamais un cumul tenu à part, qui est écrite dans
``restocking_orders.total_amount``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Iterator, Mapping

from shopstock.app.db.models.core_types import RestockingStatus
from shopstock.app.db.types import money
from shopstock.services.exceptions import (
    DuplicateLine,
    InvalidLine,
    LineNotFound,
    OrderNotEditable,
)


@dataclass(frozen=True)
class ItemLine:
    product_id: int
    quantity: int
    unit_cost: Decimal

    @property
    def total_cost(self) -> Decimal:
        return money(self.unit_cost * self.quantity)


def _check_quantity(product_id, quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidLine(product_id, f"quantity must be an integer, got {quantity!r}")
    if quantity <= 0:
        raise InvalidLine(product_id, "quantity must be > 0")
    return quantity


def _check_unit_cost(product_id, unit_cost) -> Decimal:
    try:
        cost = money(unit_cost)
    except ValueError:
        raise InvalidLine(product_id, f"unit_cost must be a finite number, got {unit_cost!r}") from None
    if cost < 0:
        raise InvalidLine(product_id, "unit_cost must be >= 0")
    return cost


def _check_product_id(product_id) -> int:
    if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
        raise InvalidLine(product_id, "product_id must be a positive integer")
    return product_id


class RestockingItemSet:
    """Lignes d'une commande ; modifiables uniquement si la commande est ``pending``."""

    def __init__(
        self,
        status: RestockingStatus = RestockingStatus.pending,
        lines: Iterable[ItemLine] = (),
        *,
        order_id: int | None = None,
    ):
        self.status = RestockingStatus(status)
        self.order_id = order_id
        self._lines: dict[int, ItemLine] = {}
        for ln in lines:
            self._lines[ln.product_id] = ln

    @classmethod
    def from_order(cls, order) -> "RestockingItemSet":
        return cls(
            order.status,
            (ItemLine(it.product_id, it.quantity, money(it.unit_cost)) for it in order.items),
            order_id=order.id,
        )

    @classmethod
    def from_payload(cls, items: Iterable[Mapping[str, Any]]) -> "RestockingItemSet":
        """Construit un set ``pending`` depuis des dicts {product_id, quantity, unit_cost}."""
        item_set = cls()
        for raw in items:
            item_set.add_line(raw.get("product_id"), raw.get("quantity"), raw.get("unit_cost"))
        return item_set

    # ---------- lecture ----------
    @property
    def editable(self) -> bool:
        return self.status == RestockingStatus.pending

    def get(self, product_id: int) -> ItemLine:
        try:
            return self._lines[product_id]
        except KeyError:
            raise LineNotFound(product_id) from None

    def lines(self) -> list[ItemLine]:
        return list(self._lines.values())

    def product_ids(self) -> list[int]:
        return list(self._lines)

    def total(self) -> Decimal:
        return money(sum((ln.total_cost for ln in self._lines.values()), Decimal("0.00")))

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[ItemLine]:
        return iter(self.lines())

    def __contains__(self, product_id) -> bool:
        return product_id in self._lines

    # ---------- mutations ----------
    def _guard(self) -> None:
        if not self.editable:
            raise OrderNotEditable(self.order_id, self.status)

    def add_line(self, product_id: int, quantity: int, unit_cost) -> ItemLine:
        self._guard()
        pid = _check_product_id(product_id)
        if pid in self._lines:
            raise DuplicateLine(pid)
        line = ItemLine(pid, _check_quantity(pid, quantity), _check_unit_cost(pid, unit_cost))
        self._lines[pid] = line
        return line

    def update_line(self, product_id: int, quantity: int, unit_cost) -> ItemLine:
        self._guard()
        if product_id not in self._lines:
            raise LineNotFound(product_id)
        line = ItemLine(
            product_id,
            _check_quantity(product_id, quantity),
            _check_unit_cost(product_id, unit_cost),
        )
        self._lines[product_id] = line
        return line

    def remove_line(self, product_id: int) -> ItemLine:
        self._guard()
        try:
            return self._lines.pop(product_id)
        except KeyError:
            raise LineNotFound(product_id) from None
