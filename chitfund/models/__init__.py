# chitfund/models/__init__.py
"""
Models aggregator so other parts of the app can
`from chitfund.models import ChitPlan, PlanSubscription, Payment, ...`.
Importing this module registers every table on Base.metadata.
"""
from chitfund.models.account_models import User, Merchant  # noqa: F401
from chitfund.models.plan_models import ChitPlan, PlanSubscription  # noqa: F401
from chitfund.models.payment_models import Payment, GatewayOrder  # noqa: F401

# Subscription status values
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_REQUESTED_WITHDRAWAL = "requested_withdrawal"
STATUS_SETTLED = "settled"

# Payment status / type values
PAYMENT_PENDING = "Pending Approval"
PAYMENT_COMPLETED = "Completed"
PAYMENT_REJECTED = "Rejected"

TYPE_ONLINE_SUBSCRIPTION = "online-subscription"
TYPE_ONLINE_INSTALLMENT = "online-installment"
TYPE_OFFLINE = "offline"

__all__ = [
    "User", "Merchant", "ChitPlan", "PlanSubscription", "Payment", "GatewayOrder",
]
