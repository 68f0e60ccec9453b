from fastapi import FastAPI, APIRouter, Depends, HTTPException, status, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, List

from shared.utils import get_db_client, settings, SuccessResponse, ErrorResponse, HealthResponse
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from cart_service.access import Principal, get_principal, require_admin
from cart_service.engine import CartEngine
from cart_service.errors import CartError
from cart_service.products import HttpProductLookup
from cart_service.schemas import (
    AddItemRequest, SetQuantityRequest, CartResponse, PopulatedCartResponse
)
from cart_service.stores import MemoryCartStore, MongoCartStore

SERVICE_NAME = "cart-service"

# Setup Logging
logger = setup_logging(SERVICE_NAME, settings.LOG_LEVEL)

# HTTP mapping of the engine's failure kinds
STATUS_BY_KIND = {
    "product_not_found": status.HTTP_404_NOT_FOUND,
    "cart_not_found": status.HTTP_404_NOT_FOUND,
    "item_not_found": status.HTTP_404_NOT_FOUND,
    "invalid_quantity": status.HTTP_400_BAD_REQUEST,
    "cart_conflict": status.HTTP_409_CONFLICT,
    "store_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}

async def cart_error_handler(request: Request, exc: CartError):
    body = ErrorResponse(error=exc.message, details={"kind": exc.kind})
    headers = {"Retry-After": "1"} if exc.transient else None
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=body.model_dump(),
        headers=headers,
    )

# --- Dependencies ---
def get_engine(request: Request) -> CartEngine:
    return request.app.state.engine

# --- Endpoints ---
router = APIRouter(prefix="/cart", tags=["Cart"])
admin_router = APIRouter(prefix="/admin/carts", tags=["Admin"])

@router.post("/items", response_model=SuccessResponse[CartResponse])
@limiter.limit(settings.RATE_LIMIT)
async def add_item(
    body: AddItemRequest,
    request: Request,
    response: Response,
    principal: Principal = Depends(get_principal),
    engine: CartEngine = Depends(get_engine),
):
    cart = await engine.add_item(principal.user_id, body.product_id, body.quantity)
    if cart.revision == 1:
        response.status_code = status.HTTP_201_CREATED
    return SuccessResponse(data=CartResponse.from_cart(cart))

@router.get("", response_model=SuccessResponse[PopulatedCartResponse])
@limiter.limit(settings.RATE_LIMIT)
async def list_cart(
    request: Request,
    principal: Principal = Depends(get_principal),
    engine: CartEngine = Depends(get_engine),
):
    populated = await engine.list_for_user(principal.user_id)
    return SuccessResponse(data=PopulatedCartResponse.from_populated(populated))

@router.get("/snapshot", response_model=SuccessResponse[CartResponse])
async def get_snapshot(principal: Principal = Depends(get_principal), engine: CartEngine = Depends(get_engine)):
    cart = await engine.get_snapshot(principal.user_id)
    return SuccessResponse(data=CartResponse.from_cart(cart))

@router.put("/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def set_quantity(
    product_id: str,
    body: SetQuantityRequest,
    principal: Principal = Depends(get_principal),
    engine: CartEngine = Depends(get_engine),
):
    cart = await engine.set_quantity(principal.user_id, product_id, body.quantity)
    return SuccessResponse(data=CartResponse.from_cart(cart))

@router.delete("/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def remove_item(product_id: str, principal: Principal = Depends(get_principal), engine: CartEngine = Depends(get_engine)):
    cart = await engine.remove_item(principal.user_id, product_id)
    return SuccessResponse(data=CartResponse.from_cart(cart))

@router.delete("", response_model=SuccessResponse[dict])
async def delete_cart(principal: Principal = Depends(get_principal), engine: CartEngine = Depends(get_engine)):
    await engine.delete_cart(principal.user_id)
    return SuccessResponse(message="Cart deleted")

# Admin
@admin_router.get("", response_model=SuccessResponse[List[PopulatedCartResponse]])
async def list_all_carts(admin: Principal = Depends(require_admin), engine: CartEngine = Depends(get_engine)):
    carts = await engine.list_all_populated()
    return SuccessResponse(data=[PopulatedCartResponse.from_populated(c) for c in carts])

@admin_router.delete("/{owner}", response_model=SuccessResponse[dict])
async def delete_cart_by_owner(owner: str, admin: Principal = Depends(require_admin), engine: CartEngine = Depends(get_engine)):
    await engine.delete_by_owner(owner)
    logger.info("Cart deleted by administrator", extra={"owner": owner, "user_id": admin.user_id})
    return SuccessResponse(data={"user_id": owner}, message="Cart deleted")

# Health
health_router = APIRouter()

@health_router.get("/health", response_model=HealthResponse)
async def health_check(engine: CartEngine = Depends(get_engine)):
    db_status = "connected" if await engine.store.ping() else "disconnected"
    products_status = "healthy" if await engine.products.ping() else "unreachable"

    overall_status = "healthy" if db_status == "connected" and products_status == "healthy" else "unhealthy"
    if overall_status == "unhealthy":
        logger.error(f"Health Check Failed: DB={db_status}, Products={products_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service Unhealthy: DB={db_status}, Products={products_status}"
        )

    return HealthResponse(
        service=SERVICE_NAME,
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        database=db_status,
        dependencies={"products-service": products_status}
    )

# --- App ---
@asynccontextmanager
async def engine_lifespan(app: FastAPI):
    if settings.CART_STORE == "memory":
        store = MemoryCartStore()
    else:
        app.state.mongodb_client = get_db_client()
        store = MongoCartStore(app.state.mongodb_client[settings.CARTS_DB_NAME].carts)
        await store.ensure_indexes()
    products = HttpProductLookup(settings.PRODUCTS_SERVICE_URL, timeout=settings.PRODUCTS_TIMEOUT_SECONDS)
    app.state.engine = CartEngine(store, products)
    logger.info(f"Cart engine ready (store={settings.CART_STORE})")
    try:
        yield
    finally:
        await products.close()
        if app.state.mongodb_client is not None:
            app.state.mongodb_client.close()

def create_app(engine: Optional[CartEngine] = None, rate_limiting: bool = True) -> FastAPI:
    """Build the service.

    When ``engine`` is None it is assembled at startup from settings and torn
    down at shutdown; an injected engine is used as is.
    """
    app = FastAPI(title="Cart Service", lifespan=engine_lifespan if engine is None else None)
    app.state.engine = engine
    app.state.mongodb_client = None

    # Security Setup
    setup_rate_limiting(app, enabled=rate_limiting)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CartError, cart_error_handler)

    app.include_router(router)
    app.include_router(admin_router)
    app.include_router(health_router)

    return app

app = create_app()
