# src/core/subscriptions/state_machine.py
from src.common.constants import SubscriptionStatus


class SubscriptionStateMachine:
    ALLOWED_TRANSITIONS = {
        SubscriptionStatus.ACTIVE: [SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED],
        SubscriptionStatus.EXPIRED: [],
        SubscriptionStatus.CANCELLED: [],
    }

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = SubscriptionStatus(current_status)
            new = SubscriptionStatus(new_status)
            return new in SubscriptionStateMachine.ALLOWED_TRANSITIONS.get(curr, [])
        except ValueError:
            return False
