import enum
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Enum, Float, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Column, SQLModel, Field, String
from uuid6 import uuid7
from marketplace.common.utils import now
from marketplace.schema.lifecycle import DeliveryStatus, EscrowStatus, OrderStatus, PaymentStatus

JSONType = JSON().with_variant(JSONB, "postgresql")


def _enum(enum_cls, name: str):
    return Enum(enum_cls, name=name, native_enum=False, length=32, validate_strings=True)

def _public_id():
    return Field(default_factory=uuid7, sa_column=Column(Uuid, unique=True, index=True, nullable=False))

def _created():
    return Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

def _updated():
    return Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

def _moment():
    return Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

def _fk(target: str, *, nullable: bool = False, ondelete: str = "CASCADE", index: bool = True):
    return Field(default=None, sa_column=Column(Integer, ForeignKey(target, ondelete=ondelete), index=index, nullable=nullable))


class RoleName(str, enum.Enum):
    ADMIN = "ADMIN"
    SELLER = "SELLER"
    RIDER = "RIDER"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ProductCategory(str, enum.Enum):
    FOODSTUFFS = "FOODSTUFFS"
    VEGETABLES = "VEGETABLES"
    FRUITS = "FRUITS"
    MEAT_FISH = "MEAT_FISH"
    GRAINS = "GRAINS"
    SPICES = "SPICES"
    BEVERAGES = "BEVERAGES"
    HOUSEHOLD = "HOUSEHOLD"
    OTHERS = "OTHERS"


class StockChangeType(str, enum.Enum):
    MANUAL_UPDATE = "MANUAL_UPDATE"
    RESTOCKED = "RESTOCKED"
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_CANCELLED = "ORDER_CANCELLED"


class NotificationType(str, enum.Enum):
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_STATUS_UPDATE = "ORDER_STATUS_UPDATE"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_RELEASED = "PAYMENT_RELEASED"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"
    DISPUTE_CREATED = "DISPUTE_CREATED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    DELIVERY_ASSIGNED = "DELIVERY_ASSIGNED"
    LOW_STOCK_ALERT = "LOW_STOCK_ALERT"
    ROLE_APPROVED = "ROLE_APPROVED"
    ROLE_REJECTED = "ROLE_REJECTED"


class DisputeStatus(str, enum.Enum):
    OPEN = "OPEN"
    IN_REVIEW = "IN_REVIEW"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class DisputeResolution(str, enum.Enum):
    BUYER_WINS = "BUYER_WINS"
    SELLER_WINS = "SELLER_WINS"
    PARTIAL = "PARTIAL"


class TokenPurpose(str, enum.Enum):
    PASSWORD_RESET = "PASSWORD_RESET"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PHONE_OTP = "PHONE_OTP"


class WebhookEventStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    IGNORED = "IGNORED"
    ERRORED = "ERRORED"


# Identity

class Users(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    email: str = Field(sa_column=Column(String(320), nullable=False, unique=True, index=True))
    name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    phone_number: Optional[str] = Field(default=None, sa_column=Column(String(20), nullable=True, unique=True))  #* nullable until profile completion
    password_hash: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    email_verified_at: Optional[datetime] = _moment()
    phone_verified_at: Optional[datetime] = _moment()
    is_suspended: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = _created()
    updated_at: datetime = _updated()


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = _fk("users.id")
    role: RoleName = Field(sa_column=Column(_enum(RoleName, "role_name"), nullable=False))
    is_active: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    # null for ADMIN, which has no approval step
    status: Optional[ApprovalStatus] = Field(default=None, sa_column=Column(_enum(ApprovalStatus, "approval_status"), nullable=True))
    kyc_submitted: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    kyc_approved: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    rejection_reason: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))

    # rider profile
    is_online: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    vehicle_type: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    vehicle_number: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    license_number: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    address: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    city: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    state: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    current_latitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    current_longitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    location_updated_at: Optional[datetime] = _moment()

    approved_at: Optional[datetime] = _moment()
    created_at: datetime = _created()
    updated_at: datetime = _updated()

    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_id_role"),)


class VerificationToken(SQLModel, table=True):
    __tablename__ = "verification_tokens"

    id: Optional[int] = Field(default=None, primary_key=True)
    identifier: str = Field(sa_column=Column(String(320), nullable=False, index=True))  # email or E.164 phone
    purpose: TokenPurpose = Field(sa_column=Column(_enum(TokenPurpose, "token_purpose"), nullable=False))
    token_hash: str = Field(sa_column=Column(String(128), nullable=False, unique=True))
    attempts: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    consumed_at: Optional[datetime] = _moment()
    created_at: datetime = _created()


# Catalog

class Shop(SQLModel, table=True):
    __tablename__ = "shops"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    user_id: int = Field(sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True))
    name: str = Field(sa_column=Column(String(200), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    address: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    city: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    state: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    phone: Optional[str] = Field(default=None, sa_column=Column(String(20), nullable=True))
    business_type: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    business_registration_number: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    latitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    longitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    rating: float = Field(default=0.0, sa_column=Column(Float, nullable=False, default=0.0))
    total_reviews: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    is_active: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = _created()
    updated_at: datetime = _updated()


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    shop_id: int = _fk("shops.id")
    name: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    category: ProductCategory = Field(sa_column=Column(_enum(ProductCategory, "product_category"), nullable=False, index=True))
    images: List[str] = Field(default_factory=list, sa_column=Column(JSONType, nullable=False, default=list))
    is_available: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = _created()
    updated_at: datetime = _updated()

    __table_args__ = (UniqueConstraint("shop_id", "name", name="uq_products_shop_id_name"),)


class PricingUnit(SQLModel, table=True):
    __tablename__ = "pricing_units"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    product_id: int = _fk("products.id")
    unit: str = Field(sa_column=Column(String(64), nullable=False))
    price: float = Field(sa_column=Column(Float, nullable=False))
    # null stock means the unit is not tracked
    stock: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    low_stock_threshold: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = _created()
    updated_at: datetime = _updated()

    __table_args__ = (
        CheckConstraint("stock IS NULL OR stock >= 0", name="ck_pricing_units_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_pricing_units_price_non_negative"),
    )


class StockChange(SQLModel, table=True):
    __tablename__ = "stock_changes"

    id: Optional[int] = Field(default=None, primary_key=True)
    pricing_unit_id: int = _fk("pricing_units.id")
    change_type: StockChangeType = Field(sa_column=Column(_enum(StockChangeType, "stock_change_type"), nullable=False))
    delta: int = Field(sa_column=Column(Integer, nullable=False))
    previous_stock: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    new_stock: int = Field(sa_column=Column(Integer, nullable=False))
    order_id: Optional[int] = _fk("orders.id", nullable=True, ondelete="SET NULL")
    reason: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = _created()


class Wishlist(SQLModel, table=True):
    __tablename__ = "wishlist_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = _fk("users.id")
    product_id: int = _fk("products.id")
    created_at: datetime = _created()

    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_wishlist_items_user_id_product_id"),)


# Orders

class Orders(SQLModel, table=True):
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    order_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True, index=True))
    buyer_id: int = _fk("users.id", ondelete="RESTRICT")
    shop_id: int = _fk("shops.id", ondelete="RESTRICT")
    status: OrderStatus = Field(default=OrderStatus.PENDING, sa_column=Column(_enum(OrderStatus, "order_status"), nullable=False, index=True, default=OrderStatus.PENDING))
    subtotal: float = Field(sa_column=Column(Float, nullable=False))
    delivery_fee: float = Field(sa_column=Column(Float, nullable=False))
    platform_fee: float = Field(sa_column=Column(Float, nullable=False))
    total: float = Field(sa_column=Column(Float, nullable=False))
    delivery_address: str = Field(sa_column=Column(String(255), nullable=False))
    delivery_city: str = Field(sa_column=Column(String(128), nullable=False))
    delivery_state: str = Field(sa_column=Column(String(128), nullable=False))
    delivery_phone: Optional[str] = Field(default=None, sa_column=Column(String(20), nullable=True))
    delivery_latitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    delivery_longitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    notes: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    cancellation_reason: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    cancelled_at: Optional[datetime] = _moment()
    delivered_at: Optional[datetime] = _moment()
    created_at: datetime = _created()
    updated_at: datetime = _updated()


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = _fk("orders.id")
    product_id: int = _fk("products.id", ondelete="RESTRICT")
    pricing_unit_id: int = _fk("pricing_units.id", ondelete="RESTRICT")
    product_name: str = Field(sa_column=Column(String(255), nullable=False))
    unit: str = Field(sa_column=Column(String(64), nullable=False))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    unit_price: float = Field(sa_column=Column(Float, nullable=False))
    total_price: float = Field(sa_column=Column(Float, nullable=False))

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),)


class Payment(SQLModel, table=True):
    __tablename__ = "payments"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True))
    amount: float = Field(sa_column=Column(Float, nullable=False))
    status: PaymentStatus = Field(default=PaymentStatus.PENDING, sa_column=Column(_enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING))
    escrow_status: EscrowStatus = Field(default=EscrowStatus.HELD, sa_column=Column(_enum(EscrowStatus, "escrow_status"), nullable=False, default=EscrowStatus.HELD))
    reference: str = Field(sa_column=Column(String(64), nullable=False, unique=True, index=True))
    gateway_reference: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    authorization_url: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    refund_reference: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    paid_at: Optional[datetime] = _moment()
    released_at: Optional[datetime] = _moment()
    refunded_at: Optional[datetime] = _moment()
    created_at: datetime = _created()
    updated_at: datetime = _updated()


class PaymentWebhookEvent(SQLModel, table=True):
    __tablename__ = "payment_webhook_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(sa_column=Column(String(32), nullable=False))
    event: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    reference: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))
    payload: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONType, nullable=True))
    status: WebhookEventStatus = Field(default=WebhookEventStatus.RECEIVED, sa_column=Column(_enum(WebhookEventStatus, "webhook_event_status"), nullable=False, default=WebhookEventStatus.RECEIVED))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    processed_at: Optional[datetime] = _moment()
    created_at: datetime = _created()


class Delivery(SQLModel, table=True):
    __tablename__ = "deliveries"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True))
    rider_id: Optional[int] = _fk("users.id", nullable=True, ondelete="SET NULL")
    status: DeliveryStatus = Field(default=DeliveryStatus.PENDING, sa_column=Column(_enum(DeliveryStatus, "delivery_status"), nullable=False, index=True, default=DeliveryStatus.PENDING))
    estimated_delivery_at: Optional[datetime] = _moment()
    assigned_at: Optional[datetime] = _moment()
    picked_up_at: Optional[datetime] = _moment()
    delivered_at: Optional[datetime] = _moment()
    rider_latitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    rider_longitude: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    notes: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = _created()
    updated_at: datetime = _updated()


class Dispute(SQLModel, table=True):
    __tablename__ = "disputes"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True))
    buyer_id: int = _fk("users.id")
    seller_id: int = _fk("users.id")
    reason: str = Field(sa_column=Column(Text(), nullable=False))
    buyer_notes: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    seller_notes: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    status: DisputeStatus = Field(default=DisputeStatus.OPEN, sa_column=Column(_enum(DisputeStatus, "dispute_status"), nullable=False, default=DisputeStatus.OPEN))
    resolution: Optional[DisputeResolution] = Field(default=None, sa_column=Column(_enum(DisputeResolution, "dispute_resolution"), nullable=True))
    admin_notes: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    resolved_at: Optional[datetime] = _moment()
    created_at: datetime = _created()
    updated_at: datetime = _updated()


# Feedback

class Review(SQLModel, table=True):
    __tablename__ = "reviews"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True))
    shop_id: int = _fk("shops.id")
    buyer_id: int = _fk("users.id")
    rating: int = Field(sa_column=Column(Integer, nullable=False))
    comment: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = _created()

    __table_args__ = (CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),)


class RiderRating(SQLModel, table=True):
    __tablename__ = "rider_ratings"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    delivery_id: int = Field(sa_column=Column(Integer, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, unique=True))
    order_id: int = _fk("orders.id")
    rider_id: int = _fk("users.id")
    buyer_id: int = _fk("users.id")
    rating: int = Field(sa_column=Column(Integer, nullable=False))
    comment: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = _created()

    __table_args__ = (CheckConstraint("rating BETWEEN 1 AND 5", name="ck_rider_ratings_rating_range"),)


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = _public_id()
    user_id: int = _fk("users.id")
    type: NotificationType = Field(sa_column=Column(_enum(NotificationType, "notification_type"), nullable=False))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    message: str = Field(sa_column=Column(Text(), nullable=False))
    link: Optional[str] = Field(default=None, sa_column=Column(String(512), nullable=True))
    # set for LOW_STOCK_ALERT so the hourly throttle can find the previous alert
    pricing_unit_id: Optional[int] = _fk("pricing_units.id", nullable=True, ondelete="SET NULL")
    is_read: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    read_at: Optional[datetime] = _moment()
    created_at: datetime = _created()
