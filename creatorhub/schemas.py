from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    name: Optional[str] = None

class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

class UserOut(BaseModel):
    id: UUID
    email: EmailStr
    name: Optional[str] = None
    subscription_tier: str
    credits: Decimal
    model_config = ConfigDict(from_attributes=True)

class CreditBalance(BaseModel):
    credits: Decimal
    tier: str
    has_access: bool

class TransactionOut(BaseModel):
    id: UUID
    amount: Decimal
    type: str
    payment_method: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_")
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# ThriveCart webhook events, one closed type per kind

CHARGE_EVENTS = {"order.success", "subscription.charge.success", "order.subscription_payment"}
CANCELLATION_EVENTS = {"subscription.cancelled", "order.subscription_cancelled", "order.subscription_paused"}
REFUND_EVENTS = {"order.refund"}

class _ThriveCartEventBase(BaseModel):
    event: str
    email: str
    product_id: str
    order_id: Optional[str] = None
    invoice_id: Optional[str] = None
    customer_name: Optional[str] = None

class ChargeEvent(_ThriveCartEventBase):
    kind: Literal["charge"] = "charge"

class CancellationEvent(_ThriveCartEventBase):
    kind: Literal["cancellation"] = "cancellation"

class RefundEvent(_ThriveCartEventBase):
    kind: Literal["refund"] = "refund"

class UnknownEvent(_ThriveCartEventBase):
    kind: Literal["unknown"] = "unknown"

ThriveCartEvent = Annotated[
    Union[ChargeEvent, CancellationEvent, RefundEvent, UnknownEvent],
    Field(discriminator="kind"),
]


# Coupons

class CouponRedeem(BaseModel):
    code: str = Field(min_length=1, max_length=64)

class CouponRedeemResult(BaseModel):
    success: bool = True
    message: str
    credits_granted: Decimal
    credits: Decimal

class CouponCreate(BaseModel):
    code: Optional[str] = None
    type: Literal["trial", "discount"] = "trial"
    months: Optional[int] = Field(default=3, ge=1)
    discount_percent: Optional[int] = Field(default=None, ge=1, le=100)
    max_uses: Optional[int] = Field(default=None, ge=1)
    expires_at: Optional[datetime] = None

class CouponOut(BaseModel):
    code: str
    type: str
    months: Optional[int] = None
    discount_percent: Optional[int] = None
    max_uses: Optional[int] = None
    uses: int
    expires_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Chat and image generation

class FileRef(BaseModel):
    url: str
    name: Optional[str] = None
    type: Optional[str] = None
    size: Optional[int] = None

class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    userId: UUID
    projectSlug: str
    model: Optional[str] = None
    threadId: Optional[UUID] = None
    fileUrls: List[FileRef] = []

class ChatResponse(BaseModel):
    success: bool = True
    reply: str
    threadId: UUID
    tokensUsed: int
    cost: Decimal

class ImageRequest(BaseModel):
    message: str = Field(min_length=1)
    userId: UUID
    projectId: Optional[UUID] = None
    projectSlug: Optional[str] = None
    model: Optional[str] = None
    quality: str = "BALANCED"
    numImages: int = Field(default=1, ge=1, le=10)
    imageSize: Optional[str] = None
    threadId: Optional[UUID] = None

class ImageResponse(BaseModel):
    success: bool = True
    isTextResponse: bool
    imageUrls: Optional[List[str]] = None
    reply: Optional[str] = None
    cost: Decimal = Decimal("0")
    remainingCredits: Optional[Decimal] = None


# Admin

class ManualGrant(BaseModel):
    amount: Decimal
    reason: str = ""

class ProjectIn(BaseModel):
    slug: str
    name: str
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    is_active: bool = True
    coming_soon: bool = False
    requires_tier2: bool = False

class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    is_active: Optional[bool] = None
    coming_soon: Optional[bool] = None
    requires_tier2: Optional[bool] = None

class ProjectOut(ProjectIn):
    id: UUID
    model_config = ConfigDict(from_attributes=True)

class UsageLogOut(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    model: str
    tokens_input: int
    tokens_output: int
    estimated_cost: Decimal
    project_id: Optional[UUID] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_")
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Video playback

class VideoOtpRequest(BaseModel):
    videoId: Optional[str] = None
