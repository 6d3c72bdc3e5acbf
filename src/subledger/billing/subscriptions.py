"""
Billing subscription store.

The system of record for whether a user currently has an active paid
subscription. Every operation runs inside exactly one transaction scope
obtained from the TransactionExecutor; the scope commits on success and
rolls back on any failure or cancellation. The store itself keeps no
mutable state and may be shared across concurrent callers.
"""

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy import exists, select

from subledger.billing.exceptions import (
    InvalidSubscriptionInputError,
    SubscriptionConstraintError,
)
from subledger.billing.models import (
    BillingSubscription,
    CreateBillingSubscriptionParams,
    StripeSubscriptionStatus,
)
from subledger.db import TransactionExecutor

logger = structlog.get_logger(__name__)


def _require_id(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidSubscriptionInputError(
            f"{field} must be a positive integer",
            validation_errors=[{"loc": [field], "input": repr(value)}],
        )
    return value


def _require_identifier(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidSubscriptionInputError(
            f"{field} must be a non-empty string",
            validation_errors=[{"loc": [field], "input": repr(value)}],
        )
    return value.strip()


def _require_status(value: Any) -> StripeSubscriptionStatus:
    try:
        return StripeSubscriptionStatus(value)
    except ValueError as exc:
        raise InvalidSubscriptionInputError(
            f"Unknown subscription status: {value!r}",
            validation_errors=[{"loc": ["stripe_subscription_status"], "input": repr(value)}],
        ) from exc


class BillingSubscriptionStore:
    """Creates and queries billing subscriptions."""

    def __init__(self, executor: TransactionExecutor | None = None):
        self.executor = executor or TransactionExecutor()

    async def create(
        self, params: CreateBillingSubscriptionParams | Mapping[str, Any]
    ) -> None:
        """
        Record a new billing subscription.

        Inserts one row in one transaction. Nothing is returned; look the
        record up afterwards if its ID is needed.

        Raises:
            InvalidSubscriptionInputError: params are malformed (checked before
                any statement is issued)
            SubscriptionConstraintError: the Stripe subscription ID is already recorded
            TransactionFailedError: the transaction could not commit
        """
        if not isinstance(params, CreateBillingSubscriptionParams):
            try:
                params = CreateBillingSubscriptionParams.model_validate(params)
            except ValidationError as exc:
                raise InvalidSubscriptionInputError(
                    "Invalid billing subscription parameters",
                    validation_errors=exc.errors(include_url=False, include_context=False),
                ) from exc

        try:
            async with self.executor.transaction() as session:
                subscription = BillingSubscription(
                    user_id=params.user_id,
                    stripe_customer_id=params.stripe_customer_id,
                    stripe_subscription_id=params.stripe_subscription_id,
                    stripe_subscription_status=params.stripe_subscription_status,
                )
                session.add(subscription)
                await session.flush()
                subscription_id = subscription.id
        except SubscriptionConstraintError as exc:
            exc.context["stripe_subscription_id"] = params.stripe_subscription_id
            exc.context["user_id"] = params.user_id
            raise

        logger.info(
            "billing_subscription.created",
            subscription_id=subscription_id,
            user_id=params.user_id,
            stripe_customer_id=params.stripe_customer_id,
            stripe_subscription_id=params.stripe_subscription_id,
            status=params.stripe_subscription_status.value,
        )

    async def get_by_id(self, subscription_id: int) -> BillingSubscription | None:
        """Return the billing subscription with the given ID, or None if there is none."""
        subscription_id = _require_id(subscription_id, "subscription_id")

        async with self.executor.transaction() as session:
            subscription = await session.get(BillingSubscription, subscription_id)

        logger.debug(
            "billing_subscription.lookup",
            subscription_id=subscription_id,
            found=subscription is not None,
        )
        return subscription

    async def get_by_stripe_subscription_id(
        self, stripe_subscription_id: str
    ) -> BillingSubscription | None:
        """Return the billing subscription mirroring the given Stripe subscription, if any."""
        stripe_subscription_id = _require_identifier(
            stripe_subscription_id, "stripe_subscription_id"
        )

        async with self.executor.transaction() as session:
            result = await session.execute(
                select(BillingSubscription).where(
                    BillingSubscription.stripe_subscription_id == stripe_subscription_id
                )
            )
            return result.scalar_one_or_none()

    async def list_by_user(self, user_id: int) -> list[BillingSubscription]:
        """
        Return all of the user's billing subscriptions, oldest first.

        Subscriptions are returned regardless of status, so this is not
        enough to decide whether the user has access. Use
        list_active_by_user or has_active_subscription for that.
        """
        user_id = _require_id(user_id, "user_id")

        async with self.executor.transaction() as session:
            result = await session.execute(
                select(BillingSubscription)
                .where(BillingSubscription.user_id == user_id)
                .order_by(BillingSubscription.id.asc())
            )
            subscriptions = list(result.scalars().all())

        logger.debug("billing_subscription.listed", user_id=user_id, count=len(subscriptions))
        return subscriptions

    async def list_active_by_user(self, user_id: int) -> list[BillingSubscription]:
        """Return the user's subscriptions whose status is exactly ``active``, oldest first."""
        user_id = _require_id(user_id, "user_id")

        async with self.executor.transaction() as session:
            result = await session.execute(
                select(BillingSubscription)
                .where(
                    BillingSubscription.user_id == user_id,
                    BillingSubscription.stripe_subscription_status
                    == StripeSubscriptionStatus.ACTIVE,
                )
                .order_by(BillingSubscription.id.asc())
            )
            subscriptions = list(result.scalars().all())

        logger.debug(
            "billing_subscription.listed_active", user_id=user_id, count=len(subscriptions)
        )
        return subscriptions

    async def has_active_subscription(self, user_id: int) -> bool:
        """Whether the user has at least one active subscription."""
        user_id = _require_id(user_id, "user_id")

        async with self.executor.transaction() as session:
            found = await session.scalar(
                select(
                    exists().where(
                        BillingSubscription.user_id == user_id,
                        BillingSubscription.stripe_subscription_status
                        == StripeSubscriptionStatus.ACTIVE,
                    )
                )
            )
        return bool(found)

    async def update_status(
        self,
        subscription_id: int,
        status: StripeSubscriptionStatus | str,
    ) -> BillingSubscription | None:
        """
        Record a new Stripe status for an existing subscription.

        Only the status (and updated_at) changes; user and Stripe IDs are
        immutable. Returns the updated subscription, or None if the ID is
        unknown.
        """
        subscription_id = _require_id(subscription_id, "subscription_id")
        status = _require_status(status)

        async with self.executor.transaction() as session:
            subscription = await session.get(BillingSubscription, subscription_id)
            if subscription is None:
                return None
            previous = subscription.stripe_subscription_status
            subscription.stripe_subscription_status = status
            await session.flush()
            user_id = subscription.user_id
            stripe_subscription_id = subscription.stripe_subscription_id

        logger.info(
            "billing_subscription.status_updated",
            subscription_id=subscription_id,
            user_id=user_id,
            stripe_subscription_id=stripe_subscription_id,
            previous_status=previous.value,
            status=status.value,
        )
        return subscription


__all__ = ["BillingSubscriptionStore"]
