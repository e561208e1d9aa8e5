from config import TIER_FREE, TIER_PRO


SUBSCRIPTION_STATUSES = {
    "active",
    "trialing",
    "canceled",
    "incomplete",
    "incomplete_expired",
    "past_due",
    "unpaid",
}

# Statuses under which the pro tier is honoured
PRO_STATUSES = {"active", "trialing"}


def tier_for_status(status: str) -> str:
    return TIER_PRO if status in PRO_STATUSES else TIER_FREE


def is_pro_subscription(subscription) -> bool:
    if subscription is None:
        return False
    return subscription.tier == TIER_PRO and subscription.status in PRO_STATUSES
