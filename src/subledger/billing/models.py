"""
Billing subscription models and database table.

A billing subscription mirrors one Stripe subscription owned by a user.
Stripe is the source of truth; rows here record the state it reported.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from subledger.db import Base, TimestampMixin
from subledger.settings import get_settings


class StripeSubscriptionStatus(str, Enum):
    """Subscription status as reported by Stripe."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"

    @property
    def is_cancelable(self) -> bool:
        """Whether Stripe still allows canceling a subscription in this status."""
        return self not in (
            StripeSubscriptionStatus.CANCELED,
            StripeSubscriptionStatus.INCOMPLETE_EXPIRED,
        )


class BillingSubscription(Base, TimestampMixin):  # type: ignore[misc]
    """SQLAlchemy table for billing subscriptions."""

    __tablename__ = "billing_subscriptions"

    # Assigned by the database, ascending in creation order
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Owning user; the users table lives elsewhere
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    stripe_customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_subscription_status: Mapped[StripeSubscriptionStatus] = mapped_column(
        SQLEnum(
            StripeSubscriptionStatus,
            name="stripe_subscription_status",
            native_enum=False,
            length=32,
            values_callable=lambda enum: [member.value for member in enum],
            validate_strings=True,
        ),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_billing_subscriptions_user_id", "user_id"),
        Index(
            "ix_billing_subscriptions_user_id_status",
            "user_id",
            "stripe_subscription_status",
        ),
        UniqueConstraint(
            "stripe_subscription_id", name="uq_billing_subscriptions_stripe_subscription_id"
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.stripe_subscription_status == StripeSubscriptionStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<BillingSubscription(id={self.id}, user_id={self.user_id}, "
            f"stripe_subscription_id={self.stripe_subscription_id!r}, "
            f"status={self.stripe_subscription_status.value!r})>"
        )


# ============================================================================
# Request / Response Schemas
# ============================================================================


class CreateBillingSubscriptionParams(BaseModel):
    """Parameters for recording a new billing subscription."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    user_id: int = Field(gt=0, description="Owning user ID")
    stripe_customer_id: str = Field(min_length=1, description="Stripe customer ID")
    stripe_subscription_id: str = Field(min_length=1, description="Stripe subscription ID")
    stripe_subscription_status: StripeSubscriptionStatus = Field(
        description="Status reported by Stripe"
    )

    @field_validator("stripe_customer_id", "stripe_subscription_id")
    @classmethod
    def validate_identifier_length(cls, v: str) -> str:
        """Reject identifiers longer than the configured column width."""
        max_length = get_settings().billing.max_identifier_length
        if len(v) > max_length:
            raise ValueError(f"must be at most {max_length} characters")
        return v


class BillingSubscriptionResponse(BaseModel):
    """Serializable view of a billing subscription."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    stripe_customer_id: str
    stripe_subscription_id: str
    stripe_subscription_status: StripeSubscriptionStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, subscription: BillingSubscription) -> "BillingSubscriptionResponse":
        return cls.model_validate(subscription)
