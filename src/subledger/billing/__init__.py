"""
Billing subscription module.

Records and queries users' Stripe subscription state:
- Closed set of Stripe subscription statuses
- The billing_subscriptions table
- BillingSubscriptionStore, the transactional access layer

Only the exceptions are imported eagerly; import models and the store from
their modules.
"""

from subledger.billing.exceptions import (
    BillingConfigurationError,
    BillingError,
    InvalidSubscriptionInputError,
    SubscriptionConstraintError,
    SubscriptionError,
    TransactionFailedError,
)

__all__ = [
    "BillingError",
    "BillingConfigurationError",
    "SubscriptionError",
    "InvalidSubscriptionInputError",
    "SubscriptionConstraintError",
    "TransactionFailedError",
]
