from fastapi import FastAPI

from shopstock.app.api.errors import install_error_handlers
from shopstock.app.api.v1.router import router as v1_router
from shopstock.app.core.logging_config import configure_logging

configure_logging()

app = FastAPI(title="SHOPSTOCK", version="0.1.0")
install_error_handlers(app)
app.include_router(v1_router, prefix="/v1")
