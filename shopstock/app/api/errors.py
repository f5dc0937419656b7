from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shopstock.services.exceptions import (
    ConsistencyError,
    NotFoundError,
    ShopStockError,
    StateError,
    ValidationError,
)


def status_for(exc: ShopStockError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (StateError, ConsistencyError)):
        return 409
    if isinstance(exc, ValidationError):
        return 400
    return 500


async def shopstock_error_handler(request: Request, exc: ShopStockError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"detail": exc.message, "code": exc.code, "retryable": exc.retryable},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ShopStockError, shopstock_error_handler)
