import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.api.admin import router as admin_router
from storefront.api.cart import cart_router, wishlist_router
from storefront.api.catalog import router as catalog_router
from storefront.api.orders import router as orders_router
from storefront.api.payments import promo_router, router as payments_router, stylist_router
from storefront.api.products import categories_router, router as products_router
from storefront.api.users import addresses_router, auth_router
from storefront.api.webhooks import router as webhooks_router
from storefront.config import get_settings
from storefront.core.exceptions import AppError, fields_from_errors, wrap_db_error
from storefront.core.responses import error_body, success_response
from storefront.models.database import init_db

settings = get_settings()

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Storefront and back-office API for an apparel store",
    version=settings.VERSION
)

# CORS middleware configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Exception handlers
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.to_dict()))

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=error_body({
            "message": "Validation failed",
            "code": "VALIDATION_ERROR",
            "fields": fields_from_errors(exc.errors()),
        })
    )

@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Unhandled database error on {request.method} {request.url.path}")
    error = wrap_db_error(exc, "Database error occurred")
    return JSONResponse(status_code=error.status_code, content=error_body(error.to_dict()))

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body({"message": str(exc.detail), "code": f"HTTP_{exc.status_code}"}),
        headers=getattr(exc, "headers", None),
    )

# Include routers
prefix = settings.API_PREFIX
app.include_router(products_router, prefix=f"{prefix}/products", tags=["products"])
app.include_router(categories_router, prefix=f"{prefix}/categories", tags=["products"])
app.include_router(auth_router, prefix=f"{prefix}/auth", tags=["auth"])
app.include_router(addresses_router, prefix=f"{prefix}/addresses", tags=["addresses"])
app.include_router(cart_router, prefix=f"{prefix}/cart", tags=["cart"])
app.include_router(wishlist_router, prefix=f"{prefix}/wishlist", tags=["wishlist"])
app.include_router(orders_router, prefix=f"{prefix}/orders", tags=["orders"])
app.include_router(payments_router, prefix=f"{prefix}/payments", tags=["payments"])
app.include_router(promo_router, prefix=f"{prefix}/promo", tags=["promo"])
app.include_router(stylist_router, prefix=f"{prefix}/stylist", tags=["stylist"])
app.include_router(admin_router, prefix=f"{prefix}/admin", tags=["admin"])
app.include_router(catalog_router, prefix=f"{prefix}/admin", tags=["admin"])
app.include_router(webhooks_router, prefix=f"{prefix}/webhooks", tags=["webhooks"])

@app.on_event("startup")
def startup_event():
    init_db()
    logger.info(f"{settings.PROJECT_NAME} {settings.VERSION} started")

@app.get("/health")
async def health_check():
    return success_response({"status": "healthy"})
