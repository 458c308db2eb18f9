"""Membership activation.

A user holds at most one Active membership. Activation expires every other
Active membership of the owner and activates the target in the same
transaction, after taking a row lock on the owning user so concurrent
activations for one user are serialized (SELECT ... FOR UPDATE; SQLite
ignores the lock and relies on its single-writer model).
"""

import calendar
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from trackfit_api.config.env import END_DATE_POLICY_CALENDAR, END_DATE_POLICY_FIXED_30_DAYS
from trackfit_api.db.models import MEMBERSHIP_ACTIVE, MEMBERSHIP_EXPIRED, Membership, User
from trackfit_api.errors import NotFound
from trackfit_api.utils.clock import utcnow

logger = logging.getLogger(__name__)

DURATION_MONTHS = {
    "Monthly": 1,
    "Quarterly": 3,
    "Yearly": 12,
}
FIXED_TERM_DAYS = 30


def add_months(start: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length.

    Jan 31 + 1 month => Feb 28/29; Jan 31 + 3 months => Apr 30.
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    last_day = calendar.monthrange(y, m)[1]
    return start.replace(year=y, month=m, day=min(start.day, last_day))


def compute_end_date(
    start: datetime, duration: Optional[str], policy: str = END_DATE_POLICY_CALENDAR
) -> datetime:
    """End date for a membership starting at start.

    calendar: Monthly +1 month, Quarterly +3, Yearly +12, unknown +1.
    fixed_30_days: start + 30 days regardless of duration.
    """
    if policy == END_DATE_POLICY_FIXED_30_DAYS:
        return start + timedelta(days=FIXED_TERM_DAYS)
    return add_months(start, DURATION_MONTHS.get(duration or "", 1))


def activate_membership(
    db: Session,
    membership_id: str,
    *,
    policy: str = END_DATE_POLICY_CALENDAR,
    now: Optional[datetime] = None,
) -> Membership:
    """Make membership_id the owner's single Active membership.

    Args:
        db: Database session (committed on success, rolled back on error)
        membership_id: Membership to activate
        policy: End-date policy (calendar or fixed_30_days)
        now: Activation time (defaults to current UTC time)

    Returns:
        The activated Membership

    Raises:
        NotFound: If the membership does not exist
    """
    membership = db.query(Membership).filter(Membership.id == membership_id).first()
    if membership is None:
        raise NotFound(f"Membership {membership_id} not found")

    start = now or utcnow()

    try:
        # Serialize activations for this user
        db.query(User).filter(User.id == membership.user_id).with_for_update().first()

        expired = (
            db.query(Membership)
            .filter(
                Membership.user_id == membership.user_id,
                Membership.status == MEMBERSHIP_ACTIVE,
                Membership.id != membership.id,
            )
            .update({Membership.status: MEMBERSHIP_EXPIRED}, synchronize_session=False)
        )

        membership.status = MEMBERSHIP_ACTIVE
        membership.start_date = start
        membership.end_date = compute_end_date(start, membership.duration, policy)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(membership)
    logger.info(
        "MEMBERSHIP_ACTIVATED",
        extra={
            "membership_id": membership.id,
            "duration": membership.duration,
            "end_date_policy": policy,
            "expired_count": expired,
        },
    )
    return membership
