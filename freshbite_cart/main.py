# freshbite_cart/main.py
from fastapi import FastAPI
import uvicorn

from freshbite_cart.api import register_error_handlers
from freshbite_cart.api.routers import carts, health
from freshbite_cart.data.database import init_db
from freshbite_cart.utils.logging import get_logger

logger = get_logger(__name__)


def create_app() -> FastAPI:
    init_db()

    app = FastAPI(
        title="FreshBite Cart Service",
        version="1.0.0",
    )

    register_error_handlers(app)

    # Include routers
    app.include_router(health.router)
    app.include_router(carts.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
