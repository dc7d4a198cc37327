"""
Main FastAPI application for the plan checkout API.
Serves health, checkout, webhook, invoice, admin and metrics routes.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from checkout.api.routes import admin, health, invoices, payments, webhooks
from checkout.core.config import settings
from checkout.core.errors import CheckoutError
from checkout.core.logging import configure_logging
from checkout.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Plan Checkout API",
    description="Plan orders, payment verification, gateway webhooks and invoices",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(
        level,
        "request_failed",
        extra={"kind": exc.kind, "status_code": exc.status_code, "method": request.method, "error": exc.message},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(payments.router)
app.include_router(webhooks.router)
app.include_router(invoices.router)
app.include_router(admin.router)
app.include_router(metrics_router)
