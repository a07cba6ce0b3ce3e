"""
FastAPI Application Entry Point

Waitstaff Ordering Client - local backend for the waitstaff UI.
Keeps the cart and unsent orders on the device and replays them against
the restaurant API when it is reachable again.

Endpoints:
    - GET /cart: Cart contents and totals for a session
    - POST /cart/items: Add an item to the cart
    - PATCH /cart/items/{id}: Change quantity (0 removes)
    - DELETE /cart/items/{id}, DELETE /cart: Remove items
    - POST /orders: Submit the cart (saved locally when offline)
    - GET /orders, GET /orders/{id}: Orders from the restaurant API
    - PATCH /orders/{id}/status, POST /orders/{id}/cancel: Track placed orders
    - GET /orders/local: Orders waiting to be synced
    - POST /sync: Replay queued orders now
    - GET /menu, GET /tables: Menu and tables, from the API or the local cache
    - PUT /auth/token, DELETE /auth/token: Saved API token
    - GET /health: System health check

Run with:
    uvicorn waitstaff.main:app --port 8002
"""

import asyncio
import logging
from typing import Any, Optional
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from waitstaff.core.config import Settings, get_settings, setup_logging
from waitstaff.core.exceptions import (
    StorageError,
    CartItemNotFound,
    OrdersAPIError,
    OrdersAPIUnavailable,
)
from waitstaff.database import create_engine_for_url
from waitstaff.models import CartItem, utc_now
from waitstaff.schemas import (
    CartItemCreate,
    CartItemUpdate,
    CartItemResponse,
    CartResponse,
    OrderCreatePayload,
    OrderItemPayload,
    OrderSubmitRequest,
    OrderSubmitResponse,
    OrderStatusUpdate,
    OrderCancelRequest,
    LocalOrderResponse,
    AuthTokenRequest,
    SyncReportResponse,
    SyncStatusResponse,
    ErrorResponse,
    HealthResponse,
)
from waitstaff.services.api import BaseOrdersAPI, MockOrdersAPI, create_orders_api
from waitstaff.services.store import AUTH_TOKEN_SETTING, LocalOrderStore, calculate_cart_total
from waitstaff.services.sync import SyncCoordinator

logger = logging.getLogger(__name__)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def build_order_payload(
    table_id: str,
    cart: list[CartItem],
    special_instructions: Optional[str] = None,
) -> OrderCreatePayload:
    """Turn cart rows into the order-creation body of the restaurant API."""
    return OrderCreatePayload(
        table_id=table_id,
        special_instructions=special_instructions,
        items=[
            OrderItemPayload(
                menu_item_id=item.menu_item_id,
                quantity=item.quantity,
                modifiers=item.modifiers or None,
                notes=item.notes or None,
            )
            for item in cart
        ],
    )


def cart_response(session_id: str, cart: list[CartItem]) -> CartResponse:
    return CartResponse(
        session_id=session_id,
        items=[CartItemResponse.model_validate(item) for item in cart],
        total_items=sum(item.quantity for item in cart),
        total_amount=calculate_cart_total(cart),
    )


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> LocalOrderStore:
    return request.app.state.store


def get_orders_api(request: Request) -> BaseOrdersAPI:
    return request.app.state.orders_api


def get_coordinator(request: Request) -> SyncCoordinator:
    return request.app.state.coordinator


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    orders_api: Optional[BaseOrdersAPI] = None,
) -> FastAPI:
    """
    Build the client backend.

    The store, orders API client and sync coordinator are created in the
    lifespan and live on ``app.state`` until shutdown. Pass ``orders_api``
    to use a specific client instead of the one ENV_MODE selects.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application startup and shutdown events.
        """
        logger.info("=" * 60)
        logger.info(f"🚀 Starting {settings.app_name}")
        logger.info(f"   Version: {settings.app_version}")
        logger.info(f"   Environment: {settings.env_mode.value}")
        logger.info(f"   Debug: {settings.debug}")
        logger.info("=" * 60)

        engine = create_engine_for_url(settings.local_database_url)
        store = LocalOrderStore(engine, default_session_id=settings.default_session_id)
        await store.initialize()
        logger.info("✅ Local store initialized")

        api = orders_api or create_orders_api(settings)
        saved_token = await store.get_setting(AUTH_TOKEN_SETTING)
        if saved_token:
            api.set_token(saved_token)
            logger.info("✅ Using saved API token")
        logger.info(f"✅ Orders API: {api.provider_name}")

        coordinator = SyncCoordinator(
            store,
            api,
            max_attempts=settings.sync_max_attempts,
            base_delay=settings.sync_base_delay_seconds,
            max_delay=settings.sync_max_delay_seconds,
            lock_file=settings.sync_lock_file,
        )

        if settings.use_real_services:
            missing = settings.validate_production_config()
            if missing:
                logger.warning(f"⚠️ Missing production config: {missing}")

        app.state.store = store
        app.state.orders_api = api
        app.state.coordinator = coordinator

        sync_task = None
        if settings.sync_interval_seconds > 0:
            sync_task = asyncio.create_task(
                coordinator.run_periodically(settings.sync_interval_seconds)
            )

        pending = await store.pending_count()
        if pending:
            logger.info(f"📦 {pending} offline order(s) waiting to be synced")
        logger.info("✅ Application ready!")

        yield  # Application runs

        logger.info("Shutting down...")
        if sync_task is not None:
            sync_task.cancel()
            try:
                await sync_task
            except asyncio.CancelledError:
                pass
        await api.aclose()
        await store.close()
        logger.info("✅ Cleanup complete")

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Offline-capable waitstaff ordering client. Stages carts and unsent "
            "orders locally and syncs them with the restaurant API."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # The UI is served from another local origin
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    _register_error_handlers(app, settings)
    return app


# =============================================================================
# ROUTES
# =============================================================================

def _register_routes(app: FastAPI) -> None:

    @app.get("/", tags=["Root"])
    async def root(settings: Settings = Depends(get_app_settings)) -> dict[str, str]:
        """API root with navigation links."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "environment": settings.env_mode.value,
            "documentation": "/docs",
            "health": "/health",
        }

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(
        store: LocalOrderStore = Depends(get_store),
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> HealthResponse:
        """Verify the local database and the orders API."""
        db_status = "healthy"
        pending = 0
        try:
            await store.ping()
            pending = await store.pending_count()
        except StorageError as e:
            db_status = f"unhealthy: {e}"

        api_status = "healthy" if await api.health_check() else "unreachable"

        if db_status != "healthy":
            overall = "down"
        elif api_status != "healthy":
            overall = "offline"
        else:
            overall = "operational"

        return HealthResponse(
            status=overall,
            database=db_status,
            orders_api=api_status,
            pending_orders=pending,
            timestamp=utc_now(),
        )

    # -------------------------------------------------------------------------
    # MENU
    # -------------------------------------------------------------------------

    @app.get("/menu", tags=["Menu"])
    async def get_menu(
        category: Optional[str] = Query(None),
        store: LocalOrderStore = Depends(get_store),
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> dict[str, Any]:
        """Menu items from the API, falling back to the local cache when offline."""
        try:
            items = await api.get_menu()
        except OrdersAPIUnavailable as e:
            logger.info(f"Serving cached menu: {e}")
            return {"source": "cache", "items": await store.get_cached_menu(category)}

        await store.cache_menu(items)
        if category:
            items = [i for i in items if (i.get("category_name") or i.get("category")) == category]
        return {"source": "remote", "items": items}

    @app.get("/tables", tags=["Tables"])
    async def get_tables(
        store: LocalOrderStore = Depends(get_store),
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> dict[str, Any]:
        """Active tables to place orders against, from the local cache when offline."""
        try:
            tables = await api.get_tables()
        except OrdersAPIUnavailable as e:
            logger.info(f"Serving cached tables: {e}")
            return {"source": "cache", "items": await store.get_cached_tables()}

        await store.cache_tables(tables)
        return {"source": "remote", "items": tables}

    # -------------------------------------------------------------------------
    # CART
    # -------------------------------------------------------------------------

    @app.get("/cart", response_model=CartResponse, tags=["Cart"])
    async def get_cart(
        session_id: Optional[str] = Query(None),
        store: LocalOrderStore = Depends(get_store),
    ) -> CartResponse:
        session_id = session_id or store.default_session_id
        return cart_response(session_id, await store.get_cart(session_id))

    @app.post("/cart/items", response_model=CartResponse, status_code=201, tags=["Cart"])
    async def add_cart_item(
        item: CartItemCreate,
        store: LocalOrderStore = Depends(get_store),
    ) -> CartResponse:
        added = await store.add_cart_item(item)
        return cart_response(added.session_id, await store.get_cart(added.session_id))

    @app.patch("/cart/items/{item_id}", response_model=CartResponse, tags=["Cart"])
    async def update_cart_item(
        item_id: int,
        update: CartItemUpdate,
        session_id: Optional[str] = Query(None),
        store: LocalOrderStore = Depends(get_store),
    ) -> CartResponse:
        """Set the quantity of an item in the session's cart. Zero or less removes it."""
        session_id = session_id or store.default_session_id
        await store.update_quantity(item_id, update.quantity, session_id)
        return cart_response(session_id, await store.get_cart(session_id))

    @app.delete("/cart/items/{item_id}", response_model=CartResponse, tags=["Cart"])
    async def remove_cart_item(
        item_id: int,
        session_id: Optional[str] = Query(None),
        store: LocalOrderStore = Depends(get_store),
    ) -> CartResponse:
        session_id = session_id or store.default_session_id
        await store.remove_cart_item(item_id, session_id)
        return cart_response(session_id, await store.get_cart(session_id))

    @app.delete("/cart", response_model=CartResponse, tags=["Cart"])
    async def clear_cart(
        session_id: Optional[str] = Query(None),
        store: LocalOrderStore = Depends(get_store),
    ) -> CartResponse:
        session_id = session_id or store.default_session_id
        await store.clear_cart(session_id)
        return cart_response(session_id, [])

    # -------------------------------------------------------------------------
    # ORDERS
    # -------------------------------------------------------------------------

    @app.post(
        "/orders",
        response_model=OrderSubmitResponse,
        responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
        tags=["Orders"],
        summary="Submit Cart as Order",
    )
    async def submit_order(
        request_data: OrderSubmitRequest,
        store: LocalOrderStore = Depends(get_store),
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> OrderSubmitResponse:
        """
        Send the session's cart to the restaurant API.

        If the API cannot be reached the order is saved locally and queued
        for the next sync. The cart is cleared in both cases; if the API
        rejects the order the cart is kept.
        """
        session_id = request_data.session_id or store.default_session_id
        cart = await store.get_cart(session_id)
        if not cart:
            raise HTTPException(status_code=400, detail="Cart is empty")

        payload = build_order_payload(
            request_data.table_id,
            cart,
            request_data.special_instructions,
        )
        logger.info(f"Submitting order for table {request_data.table_id} ({len(cart)} items)")

        try:
            order = await api.create_order(payload.model_dump(mode="json", exclude_none=True))
        except OrdersAPIUnavailable as e:
            logger.warning(f"Orders API unavailable, saving order locally: {e}")
            local_order = await store.save_order_locally(payload)
            await store.clear_cart(session_id)
            return OrderSubmitResponse(
                success=True,
                offline=True,
                message="Order saved offline and will be sent when connection returns",
                local_id=local_order.local_id,
            )

        await store.clear_cart(session_id)
        return OrderSubmitResponse(
            success=True,
            offline=False,
            message="Order placed successfully!",
            order=order,
        )

    @app.get("/orders", tags=["Orders"])
    async def list_orders(
        status: Optional[str] = Query(None),
        table: Optional[str] = Query(None),
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> list[dict[str, Any]]:
        """Orders as the restaurant API knows them."""
        return await api.list_orders(status=status, table=table, limit=limit, offset=offset)

    @app.get("/orders/local", response_model=list[LocalOrderResponse], tags=["Offline"])
    async def list_local_orders(
        store: LocalOrderStore = Depends(get_store),
    ) -> list[LocalOrderResponse]:
        """Orders saved offline, newest first."""
        return [LocalOrderResponse.model_validate(o) for o in await store.get_local_orders()]

    @app.delete("/orders/local/{local_id}", tags=["Offline"])
    async def delete_local_order(
        local_id: str,
        store: LocalOrderStore = Depends(get_store),
    ) -> dict[str, Any]:
        """Discard an offline order; it will not be synced."""
        if not await store.delete_local_order(local_id):
            raise HTTPException(status_code=404, detail=f"Local order {local_id} not found")
        return {"success": True, "local_id": local_id}

    @app.post("/orders/local/{local_id}/retry", tags=["Offline"])
    async def retry_local_order(
        local_id: str,
        store: LocalOrderStore = Depends(get_store),
    ) -> dict[str, Any]:
        """Reset the retry counter of an offline order."""
        if not await store.reset_entry(local_id):
            raise HTTPException(status_code=404, detail=f"No queued sync for {local_id}")
        return {"success": True, "local_id": local_id}

    # Registered after /orders/local so "local" is never taken for an order id
    @app.get("/orders/{order_id}", tags=["Orders"])
    async def get_order(
        order_id: str,
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> dict[str, Any]:
        return await api.get_order(order_id)

    @app.patch("/orders/{order_id}/status", tags=["Orders"])
    async def update_order_status(
        order_id: str,
        update: OrderStatusUpdate,
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> dict[str, Any]:
        """Move a placed order along (served, completed, ...)."""
        return await api.update_order_status(order_id, update.status)

    @app.post("/orders/{order_id}/cancel", tags=["Orders"])
    async def cancel_order(
        order_id: str,
        request_data: Optional[OrderCancelRequest] = None,
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> dict[str, Any]:
        """
        Cancel a placed order.

        The restaurant API only cancels pending or acknowledged orders and
        answers 400 otherwise, which is returned here as 502.
        """
        reason = request_data.reason if request_data else None
        return await api.cancel_order(order_id, reason)

    # -------------------------------------------------------------------------
    # AUTH
    # -------------------------------------------------------------------------

    @app.put("/auth/token", tags=["Auth"])
    async def set_auth_token(
        request_data: AuthTokenRequest,
        store: LocalOrderStore = Depends(get_store),
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> dict[str, Any]:
        """Save the token from a login; it is used now and after restarts."""
        await store.set_setting(AUTH_TOKEN_SETTING, request_data.token)
        api.set_token(request_data.token)
        return {"success": True}

    @app.delete("/auth/token", tags=["Auth"])
    async def clear_auth_token(
        store: LocalOrderStore = Depends(get_store),
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> dict[str, Any]:
        """Forget the saved token and go back to REMOTE_API_TOKEN."""
        await store.set_setting(AUTH_TOKEN_SETTING, None)
        api.set_token(None)
        return {"success": True}

    # -------------------------------------------------------------------------
    # SYNC
    # -------------------------------------------------------------------------

    @app.post("/sync", response_model=SyncReportResponse, tags=["Offline"])
    async def sync_pending_orders(
        coordinator: SyncCoordinator = Depends(get_coordinator),
    ) -> SyncReportResponse:
        """Replay queued orders now. Call on reconnect or app foreground."""
        report = await coordinator.sync_pending_orders()
        return SyncReportResponse(**asdict(report))

    @app.get("/sync/status", response_model=SyncStatusResponse, tags=["Offline"])
    async def sync_status(
        store: LocalOrderStore = Depends(get_store),
        coordinator: SyncCoordinator = Depends(get_coordinator),
    ) -> SyncStatusResponse:
        return SyncStatusResponse(
            pending_orders=await store.pending_count(),
            local_orders=len(await store.get_local_orders()),
            sync_in_progress=coordinator.in_progress,
        )

    # -------------------------------------------------------------------------
    # SIMULATION (development only)
    # -------------------------------------------------------------------------

    @app.post("/dev/connectivity", tags=["Simulation"], summary="Toggle Mock API Connectivity")
    async def set_connectivity(
        online: bool = Query(...),
        settings: Settings = Depends(get_app_settings),
        api: BaseOrdersAPI = Depends(get_orders_api),
    ) -> dict[str, Any]:
        """
        Take the mock orders API offline or back online.

        Used by scripts/simulate.py to reproduce connection loss locally.
        """
        if not settings.is_development or not isinstance(api, MockOrdersAPI):
            raise HTTPException(
                status_code=403,
                detail="Connectivity simulation only available with the mock orders API"
            )
        api.set_online(online)
        return {"online": api.online}


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def _register_error_handlers(app: FastAPI, settings: Settings) -> None:

    @app.exception_handler(CartItemNotFound)
    async def cart_item_not_found_handler(request: Request, exc: CartItemNotFound) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": "Not Found", "detail": str(exc)},
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error(f"Local storage failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "error": "Local storage unavailable",
                "detail": str(exc) if settings.debug else None,
            },
        )

    @app.exception_handler(OrdersAPIError)
    async def orders_api_error_handler(request: Request, exc: OrdersAPIError) -> JSONResponse:
        logger.warning(f"Orders API error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503 if isinstance(exc, OrdersAPIUnavailable) else 502,
            content={
                "success": False,
                "error": "Orders API error",
                "detail": exc.message,
                "upstream_status": exc.status_code,
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal Server Error",
                "detail": str(exc) if settings.debug else "An unexpected error occurred",
            },
        )


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

setup_logging()
app = create_app()
