'''
Fee resolution result types.
'''
import enum
from decimal import Decimal
from typing import NamedTuple, Optional

class FeeSource(str, enum.Enum):
    ATTENDANCE = "attendance"
    CLASS = "class"
    SESSION = "session"

class FeeResolution(NamedTuple):
    amount: Optional[Decimal]
    source: FeeSource
