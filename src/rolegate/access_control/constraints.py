from datetime import datetime, timedelta
from typing import Optional

from rolegate.access_control.errors import ErrorCode
from rolegate.access_control.models import Constraint


class ConstraintEvaluator:
    """
    Evaluates temporal validity constraints against a caller supplied time.

    The evaluator never reads the clock itself, so the same inputs always
    give the same answer.
    """

    def evaluate(self, constraint: Optional[Constraint], now: datetime, active_count: int = 0) -> Optional[ErrorCode]:
        """
        Return the code of the first failing check, or None when the
        constraint allows activation at ``now``.

        Order: date range, lock dates, time of day, day of week, activations.
        """
        if constraint is None:
            return None

        today = now.date()
        if constraint.begin_date and today < constraint.begin_date:
            return ErrorCode.ACTV_FAILED_DATE
        if constraint.end_date and today > constraint.end_date:
            return ErrorCode.ACTV_FAILED_DATE

        if constraint.begin_lock_date or constraint.end_lock_date:
            after_begin = constraint.begin_lock_date is None or today >= constraint.begin_lock_date
            before_end = constraint.end_lock_date is None or today <= constraint.end_lock_date
            if after_begin and before_end:
                return ErrorCode.ACTV_FAILED_LOCK

        if not self._within_time(constraint, now):
            return ErrorCode.ACTV_FAILED_TIME

        mask = constraint.day_mask
        if mask and mask.lower() != "all" and str(now.isoweekday()) not in mask:
            return ErrorCode.ACTV_FAILED_DAY

        if constraint.max_activations is not None and active_count >= constraint.max_activations:
            return ErrorCode.ACTV_FAILED_MAX

        return None

    def is_valid(self, constraint: Optional[Constraint], now: datetime, active_count: int = 0) -> bool:
        return self.evaluate(constraint, now, active_count) is None

    def session_expiry(self, constraint: Optional[Constraint], now: datetime, default_minutes: int) -> datetime:
        minutes = default_minutes
        if constraint is not None and constraint.timeout:
            minutes = constraint.timeout
        return now + timedelta(minutes=minutes)

    @staticmethod
    def _within_time(constraint: Constraint, now: datetime) -> bool:
        begin, end = constraint.begin_time, constraint.end_time
        if not begin and not end:
            return True
        current = now.strftime("%H%M")
        begin = begin or "0000"
        end = end or "2359"
        if begin <= end:
            return begin <= current <= end
        # Window wraps past midnight, e.g. 2200-0600
        return current >= begin or current <= end
