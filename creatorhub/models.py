import uuid
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import (
    Column, String, DateTime, Integer, Boolean, ForeignKey, Text, Numeric, JSON, Uuid, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .db import Base

TIERS = ("free", "tier1", "tier2", "admin")
TRANSACTION_TYPES = ("purchase", "refund", "trial", "manual_grant")
COUPON_TYPES = ("trial", "discount")

# Monetary-equivalent credit units
Money = Numeric(12, 4)


def utc_now():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255))
    password_hash = Column(String(255))
    subscription_tier = Column(String(20), nullable=False, default="free")
    credits = Column(Money, nullable=False, default=Decimal("0"))
    last_credit_update = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    allowance = relationship("SubscriptionAllowance", back_populates="user", uselist=False)


class SubscriptionAllowance(Base):
    """Monthly allowance that travels with the subscription tier."""
    __tablename__ = "user_credits"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), unique=True, nullable=False)
    tier = Column(String(20), nullable=False, default="free")
    monthly_allowance = Column(Money, nullable=False, default=Decimal("0"))
    renewal_date = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    user = relationship("User", back_populates="allowance")


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)  # +/- credits
    type = Column(String(20), nullable=False)
    payment_method = Column(String(40))
    metadata_ = Column("metadata", JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Coupon(Base):
    __tablename__ = "coupons"
    code = Column(String(64), primary_key=True)
    type = Column(String(20), nullable=False, default="trial")
    months = Column(Integer)
    discount_percent = Column(Integer)
    max_uses = Column(Integer)
    uses = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Project(Base):
    __tablename__ = "projects"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug = Column(String(120), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    system_prompt = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    coming_soon = Column(Boolean, nullable=False, default=False)
    requires_tier2 = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ChatThread(Base):
    __tablename__ = "chat_threads"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id"))
    title = Column(String(255))
    model = Column(String(120))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    messages = relationship("Message", back_populates="thread", order_by="Message.created_at")


class Message(Base):
    __tablename__ = "messages"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey("chat_threads.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # user | assistant
    content = Column(Text, nullable=False)
    model = Column(String(120))
    tokens_used = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    thread = relationship("ChatThread", back_populates="messages")


class UsageLog(Base):
    __tablename__ = "usage_logs"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), index=True)
    model = Column(String(120), nullable=False)
    tokens_input = Column(Integer, nullable=False, default=0)
    tokens_output = Column(Integer, nullable=False, default=0)
    estimated_cost = Column(Numeric(14, 8), nullable=False, default=Decimal("0"))
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id"))
    metadata_ = Column("metadata", JSON)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("ix_usage_logs_created", "created_at"),
    )


class GeneratedImage(Base):
    __tablename__ = "generated_images"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id"))
    thread_id = Column(Uuid(as_uuid=True), ForeignKey("chat_threads.id"))
    prompt = Column(Text)
    image_url = Column(Text, nullable=False)
    model = Column(String(120))
    quality = Column(String(40))
    size = Column(String(40))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class WebhookEvent(Base):
    """Consumed payment-webhook deliveries, keyed for idempotency."""
    __tablename__ = "webhook_event_log"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_key = Column(String(255), unique=True, index=True, nullable=False)
    source = Column(String(40), nullable=False)
    event_type = Column(String(100), nullable=False)
    event_data = Column(JSON)
    processed = Column(Boolean, default=False, nullable=False)
    processing_attempts = Column(Integer, default=0)
    error_message = Column(Text)
    processed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_webhook_event_processed", "processed", "created_at"),
    )
