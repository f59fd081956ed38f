'''
Three-tier fee resolution.

Every place that shows or sums a fee (attendance listing, session fee
summary, student history, monthly reports) goes through `resolve_fee`.
'''
from decimal import Decimal
from typing import Optional

from ..models.fees import FeeResolution, FeeSource

def resolve_fee(
    attendance_fee_override: Optional[Decimal],
    membership_unit_price_override: Optional[Decimal],
    session_fee_per_session: Optional[Decimal]
) -> FeeResolution:
    """
    First non-null value wins, in this order:
    1. the attendance record's own override,
    2. the student's unit-price override on the class membership,
    3. the session's fee (which may itself be null).

    Zero is a value, not a gap. Amounts are returned untouched.
    """
    if attendance_fee_override is not None:
        return FeeResolution(attendance_fee_override, FeeSource.ATTENDANCE)
    if membership_unit_price_override is not None:
        return FeeResolution(membership_unit_price_override, FeeSource.CLASS)
    return FeeResolution(session_fee_per_session, FeeSource.SESSION)
