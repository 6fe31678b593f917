"""
Verification status state machine.

    pending -> verified | failed | verification_timed_out
    any     -> pending   (explicit re-verify only)

Re-applying the current status is a no-op so that retried requests converge.
"""

import logging
import os
from datetime import datetime, timedelta
from typing import Optional

from .errors import ConflictError
from .models import VerificationStatus, parse_iso

logger = logging.getLogger(__name__)

# Window after which an unresolved verification attempt times out
VERIFICATION_TIMEOUT_HOURS = float(os.environ.get('VERIFICATION_TIMEOUT_HOURS', '24'))

# Provider (SES) statuses, lower-cased, mapped to internal statuses.
# Anything else ("not_found", "temporary_failure", "unknown") carries no information.
_PROVIDER_STATUS_MAP = {
    'success': VerificationStatus.VERIFIED,
    'failed': VerificationStatus.FAILED,
    'pending': VerificationStatus.PENDING,
}


def check_transition(
    current: VerificationStatus,
    target: VerificationStatus,
    reverify: bool = False
) -> bool:
    """
    Validate a requested status transition.

    Args:
        current: Stored status
        target: Requested status
        reverify: True for an explicit re-verify action

    Returns:
        bool: True if a write is needed, False if the transition is a no-op

    Raises:
        ConflictError: If the transition is not allowed
    """
    if reverify:
        if target is not VerificationStatus.PENDING:
            raise ConflictError(
                f"Re-verification must reset status to pending, not {target.value}"
            )
        # Re-verify always writes: it refreshes lastVerificationSent.
        return True

    if current is target:
        return False

    if current is VerificationStatus.PENDING:
        return True

    raise ConflictError(
        f"Invalid verification status transition: {current.value} -> {target.value}"
    )


def map_provider_status(provider_status: str) -> Optional[VerificationStatus]:
    """Map a provider status string to an internal status (None if unknown)."""
    return _PROVIDER_STATUS_MAP.get((provider_status or '').lower())


def timeout_window() -> timedelta:
    return timedelta(hours=VERIFICATION_TIMEOUT_HOURS)


def is_timed_out(
    attempt_started: Optional[str],
    now: datetime,
    window: Optional[timedelta] = None
) -> bool:
    """
    Check whether a verification attempt has exceeded the timeout window.

    Args:
        attempt_started: ISO timestamp the attempt was issued
        now: Current time
        window: Timeout window (defaults to VERIFICATION_TIMEOUT_HOURS)

    Returns:
        bool: True if the attempt has been pending for at least the window
    """
    if not attempt_started:
        return False
    if window is None:
        window = timeout_window()
    try:
        started = parse_iso(attempt_started)
    except ValueError:
        logger.warning(f"Unparseable verification timestamp: {attempt_started}")
        return False
    return now - started >= window
