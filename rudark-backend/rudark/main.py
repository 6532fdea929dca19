from sqlalchemy import text

from rudark.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from rudark.core.config import settings
from rudark.db.session import engine
from rudark.routers import (
    auth,
    categories,
    checkout,
    collection,
    consignments,
    maintenance,
    orders,
    products,
    promos,
    settings as shop_settings,
    stock,
    stock_audits,
    stores,
    transfers,
)

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Storefront and back-office API for Rudark.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /auth/register` to bootstrap the first owner, then `POST /auth/login`.\n"
        "2. Click **Authorize** and use your email + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Test admin endpoints (`/products`, `/stock`, `/orders`, `/consignments`) "
        "and the public ones (`/catalog`, `/checkout`, `/public/orders`)."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "Admin authentication and token issue."},
        {"name": "products", "description": "Product catalog administration and variants."},
        {"name": "categories", "description": "Product categories and the storefront menu."},
        {"name": "catalog", "description": "Public product listing and detail."},
        {"name": "checkout", "description": "Public checkout, order totals, and shipping rates."},
        {"name": "webhooks", "description": "CHIP and BizApp payment callbacks."},
        {"name": "orders", "description": "Order lifecycle, fulfilment, and refunds."},
        {"name": "order-lookup", "description": "Public order search and status."},
        {"name": "stock", "description": "Stock movements, low stock, and movement archive."},
        {"name": "promos", "description": "Promo codes and public validation."},
        {"name": "stores", "description": "Physical stores and the default store."},
        {"name": "settings", "description": "Payment, shipping, collection, and sender settings."},
        {"name": "collection", "description": "Self-collection points and collection orders."},
        {"name": "consignments", "description": "Stock placed with partner shops and its reconciliation."},
        {"name": "transfers", "description": "Stock transfers between stores."},
        {"name": "stock-audits", "description": "Physical stock counts and discrepancy adjustments."},
        {"name": "maintenance", "description": "Reservation cleanup, tracking sync, and POS stock sync."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Local storefront dev servers run on shifting localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(products.router)
app.include_router(products.public_router)
app.include_router(categories.router)
app.include_router(categories.public_router)
app.include_router(checkout.router)
app.include_router(checkout.shipping_router)
app.include_router(checkout.webhooks_router)
app.include_router(orders.router)
app.include_router(orders.public_router)
app.include_router(stock.router)
app.include_router(promos.router)
app.include_router(promos.public_router)
app.include_router(stores.router)
app.include_router(shop_settings.router)
app.include_router(shop_settings.public_router)
app.include_router(collection.router)
app.include_router(collection.orders_router)
app.include_router(collection.public_router)
app.include_router(consignments.router)
app.include_router(transfers.router)
app.include_router(stock_audits.router)
app.include_router(maintenance.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
