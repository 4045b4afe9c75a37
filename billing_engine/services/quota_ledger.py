"""
Daily quota ledger.

Counters live in ``daily_usage``, one row per user per UTC day. Admission is
a single conditional UPDATE, so concurrent increments for the same user can
never push the count past the plan limit.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Tuple, Union

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from billing_engine.errors import QuotaStoreUnavailable
from billing_engine.extensions import db
from billing_engine.models.notification import NotificationKind
from billing_engine.models.usage import DailyUsage
from billing_engine.plans import get_plan_limits, normalize_plan
from billing_engine.utils.db import insert_ignore
from billing_engine.utils.timeutil import isoformat_utc, next_utc_midnight, utcnow, utctoday

logger = logging.getLogger(__name__)

# Usage fractions that trigger a warning email, with their notification kind
WARNING_THRESHOLDS = (
    (0.8, NotificationKind.QUOTA_WARNING_80),
    (1.0, NotificationKind.QUOTA_WARNING_100),
)


@dataclass(frozen=True)
class QuotaAllowed:
    remaining: int
    count: int
    limit: int
    thresholds_crossed: Tuple[NotificationKind, ...] = ()

    @property
    def percentage(self):
        return percentage_used(self.count, self.limit)


@dataclass(frozen=True)
class QuotaDenied:
    limit: int
    count: int
    unavailable: bool = False


QuotaResult = Union[QuotaAllowed, QuotaDenied]


@dataclass(frozen=True)
class QuotaStatus:
    """Read-only view of a user's quota for one day."""
    can_use: bool
    current_usage: int
    daily_limit: int
    remaining: int
    plan: str
    reset_at: datetime

    @property
    def percentage(self):
        return percentage_used(self.current_usage, self.daily_limit)

    def to_dict(self):
        return {
            'can_use': self.can_use,
            'current_usage': self.current_usage,
            'daily_limit': self.daily_limit,
            'remaining': self.remaining,
            'percentage': self.percentage,
            'plan': self.plan,
            'reset_at': isoformat_utc(self.reset_at),
        }


def percentage_used(count, limit):
    if limit <= 0:
        return 100.0
    return round(count * 100.0 / limit, 1)


def threshold_boundary(limit, fraction):
    """Smallest count at which `fraction` of `limit` is reached."""
    return max(1, math.ceil(limit * fraction))


def thresholds_crossed(previous, current, limit):
    """Warning kinds whose boundary lies in (previous, current]."""
    return tuple(
        kind for fraction, kind in WARNING_THRESHOLDS
        if previous < threshold_boundary(limit, fraction) <= current
    )


def thresholds_reached(count, limit):
    """Warning kinds whose boundary is at or below `count`."""
    return tuple(
        kind for fraction, kind in WARNING_THRESHOLDS
        if count >= threshold_boundary(limit, fraction)
    )


class QuotaLedger:
    """Per-user, per-day usage counters with admission control."""

    def check_and_increment(self, user_id: str, plan: str, day: Optional[date] = None) -> QuotaResult:
        """Admit one metered operation if the user is under today's limit.

        Commits its own transaction. On store errors the operation is denied
        with ``unavailable=True``; usage is never admitted unmetered.
        """
        day = day or utctoday()
        limit = get_plan_limits(plan).daily_quota
        key = (DailyUsage.user_id == user_id, DailyUsage.usage_date == day)

        try:
            insert_ignore(DailyUsage, ['user_id', 'usage_date'], user_id=user_id, usage_date=day, count=0)
            result = db.session.execute(
                update(DailyUsage)
                .where(*key, DailyUsage.count < limit)
                .values(count=DailyUsage.count + 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            admitted = result.rowcount == 1
            count = db.session.execute(select(DailyUsage.count).where(*key)).scalar_one()
            db.session.commit()
        except OperationalError as e:
            db.session.rollback()
            logger.error('Quota store unavailable for user %s: %s', user_id, e)
            return QuotaDenied(limit=limit, count=0, unavailable=True)

        if not admitted:
            return QuotaDenied(limit=limit, count=count)

        return QuotaAllowed(
            remaining=max(0, limit - count),
            count=count,
            limit=limit,
            thresholds_crossed=thresholds_crossed(count - 1, count, limit),
        )

    def usage(self, user_id: str, plan: str, day: Optional[date] = None) -> QuotaStatus:
        """Quota status without consuming anything."""
        day = day or utctoday()
        limit = get_plan_limits(plan).daily_quota
        try:
            count = DailyUsage.current_count(user_id, day)
        except OperationalError as e:
            db.session.rollback()
            raise QuotaStoreUnavailable(user_id, e)

        return QuotaStatus(
            can_use=count < limit,
            current_usage=count,
            daily_limit=limit,
            remaining=max(0, limit - count),
            plan=normalize_plan(plan),
            reset_at=next_utc_midnight(day),
        )
