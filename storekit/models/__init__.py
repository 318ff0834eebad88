"""Import all models so SQLModel.metadata picks them up."""

from storekit.models.api_token import ApiToken
from storekit.models.customer import Customer, CustomerCreate, CustomerRead
from storekit.models.invoice import SubscriptionInvoice, SubscriptionInvoiceRead
from storekit.models.order import Order, OrderCreate, OrderRead, OrderStatus
from storekit.models.product import Product, ProductCreate, ProductRead
from storekit.models.subscription import (
    SubscriptionOverview,
    TenantSubscription,
    TenantSubscriptionRead,
)
from storekit.models.tenant import Tenant, TenantRead
from storekit.models.user import User, UserRead, UserRole

__all__ = [
    "ApiToken",
    "Customer",
    "CustomerCreate",
    "CustomerRead",
    "Order",
    "OrderCreate",
    "OrderRead",
    "OrderStatus",
    "Product",
    "ProductCreate",
    "ProductRead",
    "SubscriptionInvoice",
    "SubscriptionInvoiceRead",
    "SubscriptionOverview",
    "Tenant",
    "TenantRead",
    "TenantSubscription",
    "TenantSubscriptionRead",
    "User",
    "UserRead",
    "UserRole",
]
