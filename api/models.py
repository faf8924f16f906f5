"""
API request and response models for the storefront admin REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py,
audit/models.py and catalog/models.py, which own the internal domain
representation. Route handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from audit.models import AuditEntry
from auth.models import Principal
from auth.passwords import MIN_PASSWORD_LENGTH
from catalog.models import Order, Product, Size

GIFT_CARD_PATTERN = r"^GC-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/admin/auth/login.

    code is the second factor: a 6-digit TOTP code or a backup code. It is
    only consulted for principals with MFA enabled.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=1024)
    code: Optional[str] = Field(default=None, max_length=32)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    email: str
    name: Optional[str] = None
    role: str
    mfa_enabled: bool


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str]
    role: str
    mfa_enabled: bool
    permissions: list[str]


# ---------------------------------------------------------------------------
# Admin users
# ---------------------------------------------------------------------------


class AdminRoleEnum(str, Enum):
    order_viewer = "order_viewer"
    business_processing = "business_processing"
    website_admin = "website_admin"


class UserCreate(BaseModel):
    """Request body for POST /api/v1/admin/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=1024)
    name: Optional[str] = Field(default=None, max_length=255)
    role: AdminRoleEnum = AdminRoleEnum.business_processing


class UserUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}. Only supplied fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(default=None, min_length=MIN_PASSWORD_LENGTH, max_length=1024)
    name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[AdminRoleEnum] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    """Never carries the password hash or any MFA material."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str]
    role: str
    is_active: bool
    mfa_enabled: bool
    last_login: Optional[str]
    created_at: str

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserResponse":
        return cls(
            id=principal.id,
            email=principal.email,
            name=principal.name,
            role=principal.role,
            is_active=principal.is_active,
            mfa_enabled=principal.mfa_enabled,
            last_login=principal.last_login,
            created_at=principal.created_at or "",
        )


# ---------------------------------------------------------------------------
# MFA
# ---------------------------------------------------------------------------


class MfaStatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool
    pending: bool
    remaining_backup_codes: int


class MfaEnrollResponse(BaseModel):
    """Shown once. The secret is never returned again after this response."""

    model_config = ConfigDict(frozen=True)

    secret: str
    provisioning_uri: str
    qr_code: str


class MfaCodeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=6, max_length=32)


class BackupCodesResponse(BaseModel):
    """Plaintext backup codes. Shown once."""

    model_config = ConfigDict(frozen=True)

    backup_codes: list[str]
    message: str = "Store these codes somewhere safe. Each can be used once."


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    created_at: str
    user_id: Optional[int]
    user_email: Optional[str]
    action: str
    resource_type: Optional[str]
    resource_id: Optional[str]
    details: dict[str, Any]
    ip_address: Optional[str]
    user_agent: Optional[str]

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            created_at=entry.created_at,
            user_id=entry.user_id,
            user_email=entry.user_email,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            details=entry.details,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
        )


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int = Field(serialization_alias="totalPages")


class AuditQueryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    logs: list[AuditEntryResponse]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


class ProductCreate(BaseModel):
    """Request body for POST /api/v1/admin/products. title and price_gbp are required."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    price_gbp: float = Field(gt=0)
    slug: Optional[str] = Field(default=None, max_length=255, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: str = Field(default="", max_length=10000)
    category: str = Field(default="uncategorized", max_length=100)
    tags: list[str] = Field(default_factory=list, max_length=50)
    images: list[str] = Field(default_factory=list, max_length=50)
    stock: int = Field(default=0, ge=0)
    is_active: bool = True


class ProductUpdate(BaseModel):
    """Request body for PUT /api/v1/admin/products/{id}. Only supplied fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    price_gbp: Optional[float] = Field(default=None, gt=0)
    slug: Optional[str] = Field(default=None, max_length=255, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = Field(default=None, max_length=10000)
    category: Optional[str] = Field(default=None, max_length=100)
    tags: Optional[list[str]] = Field(default=None, max_length=50)
    images: Optional[list[str]] = Field(default=None, max_length=50)
    stock: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class ProductResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    slug: str
    description: str
    price_gbp: float
    category: str
    tags: list[str]
    images: list[str]
    stock: int
    is_active: bool
    created_at: str
    updated_at: Optional[str]

    @classmethod
    def from_product(cls, product: Product) -> "ProductResponse":
        return cls(
            id=product.id,
            title=product.title,
            slug=product.slug,
            description=product.description,
            price_gbp=product.price_gbp,
            category=product.category,
            tags=product.tags,
            images=product.images,
            stock=product.stock,
            is_active=product.is_active,
            created_at=product.created_at,
            updated_at=product.updated_at,
        )


# ---------------------------------------------------------------------------
# Sizes
# ---------------------------------------------------------------------------


class SizeWrite(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    short_code: Optional[str] = Field(default=None, max_length=20)
    display_order: int = Field(default=0, ge=0)


class SizeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    short_code: Optional[str]
    display_order: int

    @classmethod
    def from_size(cls, size: Size) -> "SizeResponse":
        return cls(id=size.id, name=size.name, short_code=size.short_code, display_order=size.display_order)


# ---------------------------------------------------------------------------
# Website settings -- camelCase on the wire, snake_case in storage
# ---------------------------------------------------------------------------


class CamelModel(BaseModel):
    """Base for transport shapes whose JSON keys are camelCase.

    Fields are declared once in snake_case; to_camel derives the wire name.
    Both spellings are accepted on input.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class WebsiteSettings(CamelModel):
    """Full settings document returned by GET /api/v1/admin/settings."""

    company_name: str
    tagline: str
    logo_url: str
    favicon_url: str
    primary_color: str
    secondary_color: str
    contact_email: str
    contact_phone: str
    business_address: str
    instagram_url: str
    facebook_url: str
    twitter_url: str
    default_title_suffix: str
    default_description: str
    og_image_url: str
    free_shipping_threshold: float
    shipping_cost: float
    currency: str
    max_quantity: int
    footer_tagline: str
    copyright_text: str
    footer_note: str


class WebsiteSettingsUpdate(CamelModel):
    """Partial update for PUT /api/v1/admin/settings. Unset fields are left alone."""

    company_name: Optional[str] = Field(default=None, max_length=255)
    tagline: Optional[str] = Field(default=None, max_length=255)
    logo_url: Optional[str] = Field(default=None, max_length=2048)
    favicon_url: Optional[str] = Field(default=None, max_length=2048)
    primary_color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    secondary_color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    contact_email: Optional[str] = Field(default=None, max_length=255)
    contact_phone: Optional[str] = Field(default=None, max_length=50)
    business_address: Optional[str] = Field(default=None, max_length=1000)
    instagram_url: Optional[str] = Field(default=None, max_length=2048)
    facebook_url: Optional[str] = Field(default=None, max_length=2048)
    twitter_url: Optional[str] = Field(default=None, max_length=2048)
    default_title_suffix: Optional[str] = Field(default=None, max_length=255)
    default_description: Optional[str] = Field(default=None, max_length=1000)
    og_image_url: Optional[str] = Field(default=None, max_length=2048)
    free_shipping_threshold: Optional[float] = Field(default=None, ge=0)
    shipping_cost: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, pattern=r"^[A-Z]{3}$")
    max_quantity: Optional[int] = Field(default=None, ge=1, le=1000)
    footer_tagline: Optional[str] = Field(default=None, max_length=500)
    copyright_text: Optional[str] = Field(default=None, max_length=255)
    footer_note: Optional[str] = Field(default=None, max_length=500)


class SettingsWriteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    settings: WebsiteSettings


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderStatusEnum(str, Enum):
    pending = "pending"
    paid = "paid"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    refunded = "refunded"


class OrderItemIn(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(ge=1, le=100)


class OrderCreate(BaseModel):
    """Request body for POST /api/v1/orders (the checkout order sink).

    total is what the client says it is paying. The server recomputes the
    expected total from catalog prices and notes any mismatch on the order.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    customer_email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    customer_name: str = Field(min_length=1, max_length=255)
    items: list[OrderItemIn] = Field(min_length=1, max_length=50)
    total: float = Field(ge=0)


class OrderCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_number: str
    status: str
    total: float


class OrderStatusUpdate(BaseModel):
    status: OrderStatusEnum


class OrderResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    order_number: str
    customer_email: str
    customer_name: str
    items: list[dict[str, Any]]
    subtotal: float
    shipping: float
    total: float
    status: str
    notes: Optional[str]
    created_at: str

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_email=order.customer_email,
            customer_name=order.customer_name,
            items=order.items,
            subtotal=order.subtotal,
            shipping=order.shipping,
            total=order.total,
            status=order.status,
            notes=order.notes,
            created_at=order.created_at,
        )


# ---------------------------------------------------------------------------
# Gift cards
# ---------------------------------------------------------------------------


class GiftCardCheckRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, value: Any) -> Any:
        """Trim and uppercase before the format check runs in the route."""
        return value.strip().upper() if isinstance(value, str) else value


class GiftCardBalanceResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    current_balance: float
    initial_balance: float
    currency: str
    status: str
    expires_at: Optional[str]
