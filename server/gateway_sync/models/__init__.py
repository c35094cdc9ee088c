from gateway_sync.models.card import Card
from gateway_sync.models.charge import Charge, ChargeSourceType
from gateway_sync.models.customer import Customer
from gateway_sync.models.plan import IntervalUnit, Plan, PlanStatus
from gateway_sync.models.subscription import CANCELLABLE_STATUSES, Subscription, SubscriptionStatus

__all__ = [
    "CANCELLABLE_STATUSES",
    "Card",
    "Charge",
    "ChargeSourceType",
    "Customer",
    "IntervalUnit",
    "Plan",
    "PlanStatus",
    "Subscription",
    "SubscriptionStatus",
]
