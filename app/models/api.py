"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.

Response bodies are serialized with camelCase keys because the canvas
front-end consumes them directly.
"""

from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UsageActionType(str, Enum):
    """Billable action type recorded per usage event."""

    IMAGE_GENERATION = "image_generation"
    IMAGE_EDITS = "image_edits"


class SubscriptionStatus(str, Enum):
    """Subscription statuses the service itself writes.

    The billing provider may write any other status string.
    """

    ACTIVE = "active"
    CANCELLED = "cancelled"


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Usage Models
# ============================================================================


class UsageEventItem(CamelModel):
    """Single usage event in the current month."""

    id: UUID
    type: UsageActionType
    date: str  # ISO 8601 timestamp


class NextPlanItem(CamelModel):
    """Upgrade suggestion: the next plan up by generation limit."""

    name: str
    image_generation_limit: int
    price_monthly: str | None = None


class UserUsageResponse(CamelModel):
    """GET /api/user-usage response."""

    plan_name: str
    image_generation_limit: int
    image_generations_used: int
    has_stripe_subscription: bool = False
    events: list[UsageEventItem] = Field(default_factory=list)
    next_plan: NextPlanItem | None = None


class UsageLimitDetails(CamelModel):
    """Details returned with a 403 quota response."""

    usage_count: int
    limit: int
    plan_name: str


class UsageLimitResponse(BaseModel):
    """403 quota-exceeded response body."""

    error: str = "Usage limit reached, please upgrade your plan"
    details: UsageLimitDetails


# ============================================================================
# Image Action Models
# ============================================================================


class GenerateImageRequest(BaseModel):
    """POST /api/generate-image request body."""

    prompt: str = Field(..., min_length=1)
    image_size: str = "square_hd"
    num_inference_steps: int = Field(default=28, ge=1, le=100)
    guidance_scale: float = Field(default=4.5, ge=0)
    num_images: int = Field(default=1, ge=1, le=4)
    enable_safety_checker: bool = True
    output_format: Literal["jpeg", "png"] = "jpeg"
    acceleration: str = "regular"


class UploadedImage(BaseModel):
    """Image sent inline as base64 with its MIME type."""

    data: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)


class EditImageRequest(BaseModel):
    """POST /api/edit-image request body."""

    prompt: str = Field(..., min_length=1)
    images: list[str | UploadedImage] = Field(..., min_length=1)
    image_size: str = "square_hd"
    num_images: int = Field(default=1, ge=1, le=4)
    max_images: int = Field(default=1, ge=1, le=4)
    enable_safety_checker: bool = True


class ImageResponse(CamelModel):
    """Image action response; image_data is a data URL."""

    success: bool = True
    image_data: str
    seed: int | None = None
    timings: dict[str, Any] | None = None


# ============================================================================
# Billing Models
# ============================================================================


class CheckoutSessionRequest(CamelModel):
    """POST /api/stripe/create-checkout-session request body."""

    plan_name: str | None = None


class SessionUrlResponse(BaseModel):
    """Checkout or portal session redirect URL."""

    url: str


class InvoiceItem(CamelModel):
    """Single invoice as shown on the billing page."""

    id: str
    date: str
    description: str
    status: Literal["Paid", "Pending", "Failed"]
    amount: float
    currency: str
    invoice_url: str | None = None


class InvoiceListResponse(BaseModel):
    """GET /api/billing/invoices response."""

    invoices: list[InvoiceItem]


# ============================================================================
# Webhook Models
# ============================================================================


class WebhookAck(BaseModel):
    """Webhook acknowledgement."""

    received: bool = True


class SignupResponse(CamelModel):
    """Sign-up webhook response."""

    success: bool = True
    user_id: UUID | None = None
    message: str


# ============================================================================
# Health Check Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    cache: Literal["connected", "disconnected"]
    timestamp: str


# ============================================================================
# Error Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Normalized error envelope."""

    error: str
    message: str | None = None
    details: Any | None = None
