from .database import Base, get_db
from .users import User, UserRole, Address, STAFF_ROLES, BACKOFFICE_LOGIN_ROLES
from .products import (
    Category, Product, ProductStatus, ProductImage, ProductVariant, VariantImage,
    Inventory, InventoryStatus, Review, WishlistItem, CartItem, product_categories,
    stock_status, DEFAULT_LOW_STOCK_THRESHOLD,
)
from .orders import Order, OrderItem, OrderStatus, OrderStatusHistory, PaymentMode
from .payments import Payment, PaymentStatus
from .promos import Coupon, CouponType, PromoUsageLog
from .system import StoreSetting, AuditLog, IdempotencyRecord

__all__ = [
    "Base",
    "get_db",
    "User",
    "UserRole",
    "Address",
    "STAFF_ROLES",
    "BACKOFFICE_LOGIN_ROLES",
    "Category",
    "Product",
    "ProductStatus",
    "ProductImage",
    "ProductVariant",
    "VariantImage",
    "Inventory",
    "InventoryStatus",
    "Review",
    "WishlistItem",
    "CartItem",
    "product_categories",
    "stock_status",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "PaymentMode",
    "Payment",
    "PaymentStatus",
    "Coupon",
    "CouponType",
    "PromoUsageLog",
    "StoreSetting",
    "AuditLog",
    "IdempotencyRecord",
]
