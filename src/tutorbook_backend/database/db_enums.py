'''
Static enums mirrored by the string ENUM columns in models.py.
'''
import enum

class ListableEnum(str, enum.Enum):
    """A str Enum that can list all member values."""
    @classmethod
    def get_all_names(cls) -> list[str]:
        return [member.value for member in cls]

class SessionStatusEnum(ListableEnum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"

class SessionTypeEnum(ListableEnum):
    CLASS = "class"
    AD_HOC = "ad_hoc"

class AttendanceStatusEnum(ListableEnum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"

class ParentRelationshipEnum(ListableEnum):
    FATHER = "father"
    MOTHER = "mother"
    GRANDFATHER = "grandfather"
    GRANDMOTHER = "grandmother"
    OTHER = "other"

# Statuses that occupy a teacher's time slot
BLOCKING_SESSION_STATUSES = (SessionStatusEnum.SCHEDULED.value, SessionStatusEnum.COMPLETED.value)

# Statuses that are billed
BILLABLE_ATTENDANCE_STATUSES = (AttendanceStatusEnum.PRESENT.value, AttendanceStatusEnum.LATE.value)
