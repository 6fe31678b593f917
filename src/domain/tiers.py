"""
Subscription tier policy.

Maps a tier label to its sender quota and verification capabilities.
"""

from typing import Dict, Tuple

from .models import TierLimits

DEFAULT_TIER = 'free-tier'

# tier -> (max senders, can use DNS verification, can use mailbox verification)
TIER_CONFIG: Dict[str, Tuple[int, bool, bool]] = {
    'free-tier': (1, False, True),
    'creator-tier': (2, True, True),
    'pro-tier': (5, True, True),
}


def resolve_limits(tier: str, current_count: int) -> TierLimits:
    """
    Resolve the limits for a tier.

    Unknown tiers get the free-tier limits but keep their own label, so the
    caller can still display what the tenant is subscribed to.

    Args:
        tier: Tier label from the user context
        current_count: Number of senders the tenant currently has

    Returns:
        TierLimits for the tier
    """
    max_senders, can_use_dns, can_use_mailbox = TIER_CONFIG.get(
        tier, TIER_CONFIG[DEFAULT_TIER]
    )
    return TierLimits(
        tier=tier,
        max_senders=max_senders,
        current_count=current_count,
        can_use_dns=can_use_dns,
        can_use_mailbox=can_use_mailbox,
    )
