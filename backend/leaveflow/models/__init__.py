from leaveflow.models.activity_log import ActivityLog  # noqa: F401
from leaveflow.models.balance_account import BalanceAccount  # noqa: F401
from leaveflow.models.leave_request import (  # noqa: F401
    ALLOWED_TRANSITIONS,
    BLOCKING_STATUSES,
    TERMINAL_STATUSES,
    LeaveKind,
    LeavePriority,
    LeaveRequest,
    LeaveStatus,
)
from leaveflow.models.leave_review import LeaveReview, ReviewDecision  # noqa: F401
from leaveflow.models.notification import Notification  # noqa: F401
from leaveflow.models.requester import Requester, RequesterRole  # noqa: F401
from leaveflow.models.schedule_entry import ScheduleEntry  # noqa: F401
from leaveflow.models.substitute_assignment import (  # noqa: F401
    AssignmentStatus,
    SubstituteAssignment,
)
