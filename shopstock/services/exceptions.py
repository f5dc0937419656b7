"""
Typed exceptions for the restocking engine and the stock ledger.

Every error carries a machine-readable ``code`` plus the structured data the
caller needs to react (order id, product id, quantities). Catch by type, not
by message.

    ShopStockError
    |
    +-- ValidationError          (caller-correctable, nothing written)
    |   +-- InvalidLine
    |   +-- EmptyOrder
    |   +-- DuplicateLine
    |   +-- LineNotFound
    |   +-- InvalidDelta
    |   +-- InvalidTransition
    |
    +-- StateError               (order exists, wrong status, nothing written)
    |   +-- OrderNotEditable
    |   +-- AlreadyCompleted
    |
    +-- ConsistencyError         (retry the whole operation)
    |   +-- InsufficientStock
    |   +-- StockAdjustmentFailed
    |   +-- ConcurrencyConflict
    |
    +-- NotFoundError
        +-- ProductNotFound
        +-- SupplierNotFound
        +-- OrderNotFound
"""

from __future__ import annotations


class ShopStockError(Exception):
    code: str = "SHOPSTOCK_ERROR"
    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# ---------- Validation ----------
class ValidationError(ShopStockError):
    code = "VALIDATION_ERROR"


class InvalidLine(ValidationError):
    code = "INVALID_LINE"

    def __init__(self, product_id, reason: str):
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Invalid line for product {product_id}: {reason}")


class EmptyOrder(ValidationError):
    code = "EMPTY_ORDER"

    def __init__(self, order_id: int | None = None):
        self.order_id = order_id
        if order_id is None:
            msg = "A restocking order needs at least one item"
        else:
            msg = f"Restocking order {order_id} has no items"
        super().__init__(msg)


class DuplicateLine(ValidationError):
    code = "DUPLICATE_LINE"

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} is already in this order; update the existing line instead"
        )


class LineNotFound(ValidationError):
    code = "LINE_NOT_FOUND"

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(f"Product {product_id} is not in this order")


class InvalidDelta(ValidationError):
    code = "INVALID_DELTA"

    def __init__(self, product_id, delta):
        self.product_id = product_id
        self.delta = delta
        super().__init__(f"Invalid stock delta {delta!r} for product {product_id}")


class InvalidTransition(ValidationError):
    code = "INVALID_TRANSITION"

    def __init__(self, order_id: int, target):
        self.order_id = order_id
        self.target = target
        super().__init__(f"Restocking order {order_id} cannot be moved to {target!r}")


# ---------- State ----------
class StateError(ShopStockError):
    code = "STATE_ERROR"


class OrderNotEditable(StateError):
    code = "ORDER_NOT_EDITABLE"

    def __init__(self, order_id: int | None, status):
        self.order_id = order_id
        self.status = getattr(status, "value", status)
        super().__init__(
            f"Restocking order {order_id} is {self.status} and can no longer be modified"
        )


class AlreadyCompleted(StateError):
    code = "ALREADY_COMPLETED"

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(
            f"Restocking order {order_id} is already completed; stock was not changed again"
        )


# ---------- Consistency ----------
class ConsistencyError(ShopStockError):
    code = "CONSISTENCY_ERROR"
    retryable = True


class InsufficientStock(ConsistencyError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id} "
            f"(available={available}, delta={requested})"
        )


class StockAdjustmentFailed(ConsistencyError):
    code = "STOCK_ADJUSTMENT_FAILED"

    def __init__(self, order_id: int, product_id: int, reason: str):
        self.order_id = order_id
        self.product_id = product_id
        self.reason = reason
        super().__init__(
            f"Restocking order {order_id} was not completed: stock update failed "
            f"for product {product_id} ({reason})"
        )


class ConcurrencyConflict(ConsistencyError):
    code = "CONCURRENCY_CONFLICT"

    def __init__(self, message: str = "Concurrent update in progress, retry the operation"):
        super().__init__(message)


# ---------- Not found ----------
class NotFoundError(ShopStockError):
    code = "NOT_FOUND"


class ProductNotFound(NotFoundError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class SupplierNotFound(NotFoundError):
    code = "SUPPLIER_NOT_FOUND"

    def __init__(self, supplier_id):
        self.supplier_id = supplier_id
        super().__init__(f"Supplier {supplier_id} not found")


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Restocking order {order_id} not found")
