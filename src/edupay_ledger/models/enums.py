'''
Closed status and tier enums shared by the ledger models and the database layer.
'''
import enum

# --- Base Enum Class ---
class ListableEnum(str, enum.Enum):
    """A custom Enum base class that can list all member names."""
    @classmethod
    def get_all_names(cls) -> list[str]:
        return [member.value for member in cls]

class InstallmentStatus(ListableEnum):
    NOT_STARTED = 'not_started'
    PARTIAL = 'partial'
    COMPLETED = 'completed'

class PaymentStatus(ListableEnum):
    NO_PAYMENT = 'no_payment'
    PARTIAL = 'partial'
    FULLY_PAID = 'fully_paid'

class PaymentRecordStatus(ListableEnum):
    CLEARED = 'cleared'
    REVERSED = 'reversed'

class EnrollmentStatus(ListableEnum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    GRADUATED = 'graduated'
    TRANSFERRED = 'transferred'

class AcademicTerm(ListableEnum):
    TERM_1 = 'term_1'
    TERM_2 = 'term_2'
    TERM_3 = 'term_3'

class CarryoverType(ListableEnum):
    DEBIT = 'debit'
    CREDIT = 'credit'

class CarryoverStatus(ListableEnum):
    PENDING = 'pending'
    APPLIED = 'applied'
    WAIVED = 'waived'

    @property
    def is_terminal(self) -> bool:
        return self is not CarryoverStatus.PENDING

class AdjustmentType(ListableEnum):
    WAIVER = 'waiver'
    DISCOUNT = 'discount'
    CORRECTION = 'correction'
    INTEREST = 'interest'
    PENALTY = 'penalty'
    WRITE_OFF = 'write_off'

class PromiseStatus(ListableEnum):
    PENDING = 'pending'
    DUE = 'due'
    OVERDUE = 'overdue'
    PARTIAL = 'partial'
    FULFILLED = 'fulfilled'
    BROKEN = 'broken'
    CANCELLED = 'cancelled'

class PromisePriority(ListableEnum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

class UrgencyLevel(ListableEnum):
    NONE = 'none'
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

class SeverityLevel(ListableEnum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

    @property
    def rank(self) -> int:
        """0 for the most severe tier, used to sort outreach queues."""
        return _SEVERITY_RANK[self]

class FollowUpAction(ListableEnum):
    REMINDER_SENT = 'reminder_sent'
    PAYMENT_RECEIVED = 'payment_received'
    EXTENSION_GRANTED = 'extension_granted'
    CANCELLED = 'cancelled'
    NOTE_ADDED = 'note_added'

class ReminderChannel(ListableEnum):
    SMS = 'sms'
    WHATSAPP = 'whatsapp'
    EMAIL = 'email'
    PHONE_CALL = 'phone_call'
    IN_PERSON = 'in_person'


_SEVERITY_RANK = {
    SeverityLevel.CRITICAL: 0,
    SeverityLevel.HIGH: 1,
    SeverityLevel.MEDIUM: 2,
    SeverityLevel.LOW: 3,
}

PRIORITY_RANK = {
    PromisePriority.CRITICAL: 0,
    PromisePriority.HIGH: 1,
    PromisePriority.MEDIUM: 2,
    PromisePriority.LOW: 3,
}
