"""V1 API router aggregation."""

from fastapi import APIRouter

from storekit.api.v1.auth import router as auth_router
from storekit.api.v1.customers import router as customers_router
from storekit.api.v1.invoices import router as invoices_router
from storekit.api.v1.orders import router as orders_router
from storekit.api.v1.products import router as products_router
from storekit.api.v1.subscription import router as subscription_router
from storekit.api.v1.tenants import router as tenants_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(tenants_router)
v1_router.include_router(auth_router)
v1_router.include_router(subscription_router)
v1_router.include_router(invoices_router)
v1_router.include_router(products_router)
v1_router.include_router(customers_router)
v1_router.include_router(orders_router)
