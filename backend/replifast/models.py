"""
RepliFast — Database Models
Businesses (tenants), their automation settings, mirrored Google reviews,
automation run records, subscriptions, and the activity audit trail.
"""

import uuid
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    String, Text, Integer, Boolean, DateTime,
    JSON, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID
from replifast.database import Base


def _utcnow() -> datetime:
    """Naive UTC now, matching DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class ConnectionStatus(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    NEEDS_RECONNECTION = "needs_reconnection"
    ERROR = "error"


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    POSTED = "posted"
    NEEDS_EDIT = "needs_edit"
    SKIPPED = "skipped"


class ApprovalMode(str, enum.Enum):
    MANUAL = "manual"
    AUTO_4_PLUS = "auto_4_plus"
    AUTO_EXCEPT_LOW = "auto_except_low"


class SyncSlot(str, enum.Enum):
    SLOT_1 = "slot_1"
    SLOT_2 = "slot_2"


class TriggerType(str, enum.Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    RETRY = "retry"


class BrandVoicePreset(str, enum.Enum):
    FRIENDLY = "friendly"
    PROFESSIONAL = "professional"
    PLAYFUL = "playful"
    CUSTOM = "custom"


# ══════════════════════════════════════════════════════════════════════
#  BUSINESSES (tenants)
# ══════════════════════════════════════════════════════════════════════

class Business(Base):
    """A linked Google Business Profile location. Unit of tenant isolation."""
    __tablename__ = "businesses"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    industry: Mapped[str] = mapped_column(String(255), nullable=True)
    owner_email: Mapped[str] = mapped_column(String(320), nullable=True)
    customer_support_email: Mapped[str] = mapped_column(String(320), nullable=True)
    customer_support_phone: Mapped[str] = mapped_column(String(64), nullable=True)

    # Google location reference + OAuth tokens (encrypted at rest)
    google_account_id: Mapped[str] = mapped_column(String(255), nullable=True)
    google_location_id: Mapped[str] = mapped_column(String(255), nullable=True)
    google_access_token: Mapped[str] = mapped_column(Text, nullable=True)
    google_refresh_token: Mapped[str] = mapped_column(Text, nullable=True)
    google_token_expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    connection_status: Mapped[str] = mapped_column(String(32), default=ConnectionStatus.DISCONNECTED.value)
    last_connection_attempt: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    # Sync watermark
    last_review_sync: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    initial_backfill_complete: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    settings: Mapped["BusinessSettings"] = relationship(
        "BusinessSettings", back_populates="business", uselist=False, cascade="all, delete-orphan"
    )
    reviews: Mapped[list["Review"]] = relationship("Review", back_populates="business", cascade="all, delete-orphan")
    automation_runs: Mapped[list["AutomationRun"]] = relationship(
        "AutomationRun", back_populates="business", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_businesses_user_id", "user_id"),
        Index("ix_businesses_connection_status", "connection_status"),
    )

    @property
    def is_connected(self) -> bool:
        return (
            self.connection_status == ConnectionStatus.CONNECTED.value
            and bool(self.google_account_id)
            and bool(self.google_location_id)
        )

    @property
    def business_info(self) -> dict:
        return {
            "name": self.name,
            "industry": self.industry or "local",
            "contact_email": self.customer_support_email,
            "phone": self.customer_support_phone,
        }


class BusinessSettings(Base):
    """Per-tenant brand voice and automation configuration."""
    __tablename__ = "business_settings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    # Brand voice
    brand_voice_preset: Mapped[str] = mapped_column(String(32), default=BrandVoicePreset.FRIENDLY.value)
    formality_level: Mapped[int] = mapped_column(Integer, default=3)
    warmth_level: Mapped[int] = mapped_column(Integer, default=3)
    brevity_level: Mapped[int] = mapped_column(Integer, default=3)
    custom_instruction: Mapped[str] = mapped_column(Text, nullable=True)

    # Automation
    approval_mode: Mapped[str] = mapped_column(String(32), default=ApprovalMode.MANUAL.value)
    auto_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_sync_slot: Mapped[str] = mapped_column(String(16), default=SyncSlot.SLOT_1.value)
    auto_reply_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_post_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    email_notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    automation_errors: Mapped[list] = mapped_column(JSON, default=list)  # newest first, bounded
    last_automation_run: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    business: Mapped["Business"] = relationship("Business", back_populates="settings")

    __table_args__ = (
        Index("ix_business_settings_auto_sync", "auto_sync_enabled", "auto_sync_slot"),
    )

    @property
    def brand_voice(self) -> dict:
        return {
            "preset": self.brand_voice_preset or BrandVoicePreset.FRIENDLY.value,
            "formality": self.formality_level or 3,
            "warmth": self.warmth_level or 3,
            "brevity": self.brevity_level or 3,
            "custom_instruction": self.custom_instruction,
        }


# ══════════════════════════════════════════════════════════════════════
#  REVIEWS: mirrored from Google Business Profile
# ══════════════════════════════════════════════════════════════════════

class Review(Base):
    """One Google review mirrored locally, with its reply lifecycle."""
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    google_review_id: Mapped[str] = mapped_column(String(512), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), default="Anonymous")
    customer_avatar_url: Mapped[str] = mapped_column(Text, nullable=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    review_text: Mapped[str] = mapped_column(Text, default="")
    review_date: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=ReviewStatus.PENDING.value)

    # Reply lifecycle
    ai_reply: Mapped[str] = mapped_column(Text, nullable=True)
    final_reply: Mapped[str] = mapped_column(Text, nullable=True)
    reply_tone: Mapped[str] = mapped_column(String(32), nullable=True)
    posted_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    # Automation flags
    automated_reply: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    automation_failed: Mapped[bool] = mapped_column(Boolean, default=False)
    automation_error: Mapped[str] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    business: Mapped["Business"] = relationship("Business", back_populates="reviews")

    __table_args__ = (
        UniqueConstraint("business_id", "google_review_id", name="uq_review_business_google_id"),
        Index("ix_reviews_business_status", "business_id", "status"),
        Index("ix_reviews_business_created", "business_id", "created_at"),
        Index("ix_reviews_automation_failed", "business_id", "automation_failed"),
    )


# ══════════════════════════════════════════════════════════════════════
#  AUTOMATION RUNS: immutable record of one pass for one tenant
# ══════════════════════════════════════════════════════════════════════

class AutomationRun(Base):
    __tablename__ = "automation_runs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False
    )
    slot_id: Mapped[str] = mapped_column(String(16), nullable=True)
    trigger_type: Mapped[str] = mapped_column(String(16), default=TriggerType.MANUAL.value)
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    processed_reviews: Mapped[int] = mapped_column(Integer, default=0)
    generated_replies: Mapped[int] = mapped_column(Integer, default=0)
    auto_approved: Mapped[int] = mapped_column(Integer, default=0)
    auto_posted: Mapped[int] = mapped_column(Integer, default=0)
    emails_sent: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[list] = mapped_column(JSON, default=list)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    business: Mapped["Business"] = relationship("Business", back_populates="automation_runs")

    __table_args__ = (
        Index("ix_automation_runs_business_completed", "business_id", "completed_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  AUTOMATION LEASES: advisory per-tenant lock, kept off the businesses row
# ══════════════════════════════════════════════════════════════════════

class AutomationLease(Base):
    """
    One row per business that has run automation. A pass holds the lease
    while owner is set and expires_at is still in the future.
    """
    __tablename__ = "automation_leases"

    business_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), primary_key=True
    )
    owner: Mapped[str] = mapped_column(String(64), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)


# ══════════════════════════════════════════════════════════════════════
#  SUBSCRIPTIONS: written by billing webhooks, read here for entitlements
# ══════════════════════════════════════════════════════════════════════

class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)
    plan_id: Mapped[str] = mapped_column(String(32), default="basic")
    status: Mapped[str] = mapped_column(String(32), default="active")
    current_period_end: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


# ══════════════════════════════════════════════════════════════════════
#  ACTIVITY LOG
# ══════════════════════════════════════════════════════════════════════

class ActivityLog(Base):
    """Logs sync, automation, and recovery actions for the audit trail."""
    __tablename__ = "activity_log"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # sync, automation, recovery, cron
    description: Mapped[str] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=True)  # business, review, run
    entity_id: Mapped[str] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="success")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_activity_log_business_id", "business_id"),
        Index("ix_activity_log_category", "category"),
        Index("ix_activity_log_action", "action"),
        Index("ix_activity_log_created_at", "created_at"),
        Index("ix_activity_log_entity", "entity_type", "entity_id"),
    )
