"""
Pydantic Schemas for Request/Response Validation

Covers:
- Cart items and modifiers
- The order-creation body sent to the restaurant API
- Offline orders and sync reports
"""

from pydantic import BaseModel, ConfigDict, Field, AliasChoices
from typing import Optional, List, Any, Literal
from datetime import datetime

from waitstaff.models import LocalOrderStatus


# =============================================================================
# CART
# =============================================================================

class Modifier(BaseModel):
    """Menu item modifier, e.g. "Extra cheese (+$1.50)"."""
    id: str
    name: str
    price_delta: float = Field(
        default=0.0,
        validation_alias=AliasChoices("price_delta", "price"),
        examples=[1.5],
    )


class CartItemCreate(BaseModel):
    """Request schema for adding an item to the cart."""
    menu_item_id: str = Field(..., min_length=1, examples=["b6f1c0de-0000-4000-8000-000000000001"])
    name: str = Field(..., min_length=1, max_length=200, examples=["Pizza Margherita"])
    unit_price: float = Field(..., ge=0, examples=[14.99])
    quantity: int = Field(default=1, ge=1, examples=[2])
    modifiers: List[Modifier] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=500)
    session_id: Optional[str] = Field(None, max_length=64)


class CartItemUpdate(BaseModel):
    """Zero or a negative quantity removes the item."""
    quantity: int


class CartItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    menu_item_id: str
    name: str
    unit_price: float
    quantity: int
    modifiers: List[Modifier]
    notes: Optional[str]
    session_id: str
    line_total: float
    added_at: datetime


class CartResponse(BaseModel):
    session_id: str
    items: List[CartItemResponse]
    total_items: int
    total_amount: float


# =============================================================================
# ORDERS
# =============================================================================

class OrderItemPayload(BaseModel):
    """Single item in the order-creation body."""
    menu_item_id: str
    quantity: int = Field(..., ge=1)
    modifiers: Optional[List[Modifier]] = None
    notes: Optional[str] = None


class OrderCreatePayload(BaseModel):
    """Body of POST /orders on the restaurant API."""
    table_id: str = Field(..., min_length=1)
    items: List[OrderItemPayload] = Field(..., min_length=1)
    special_instructions: Optional[str] = Field(None, max_length=500)
    customer_session_id: Optional[str] = None


class OrderSubmitRequest(BaseModel):
    """Submit the cart of ``session_id`` as an order for ``table_id``."""
    table_id: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    special_instructions: Optional[str] = Field(None, max_length=500)


class OrderSubmitResponse(BaseModel):
    success: bool
    offline: bool
    message: str
    order: Optional[dict[str, Any]] = None
    local_id: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: Literal["pending", "acknowledged", "preparing", "ready", "served", "completed", "cancelled"]


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200, examples=["Guest left"])


class LocalOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    local_id: str
    payload: dict[str, Any]
    table_id: Optional[str]
    status: LocalOrderStatus
    created_at: datetime


# =============================================================================
# SYNC
# =============================================================================

class SyncReportResponse(BaseModel):
    attempted: int
    synced: int
    failed: int
    deferred: int
    exhausted: int
    skipped: bool
    refreshed: bool
    remote_orders: List[dict[str, Any]]
    errors: List[str]


class SyncStatusResponse(BaseModel):
    pending_orders: int
    local_orders: int
    sync_in_progress: bool


# =============================================================================
# MISC
# =============================================================================

class AuthTokenRequest(BaseModel):
    """Bearer token obtained by logging in to the restaurant API."""
    token: str = Field(..., min_length=1)


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    orders_api: str
    pending_orders: int
    timestamp: datetime
