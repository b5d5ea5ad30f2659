class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class ValidationError(AppError):
    """Raised for malformed input: dates, ranges, blank comments, unroutable requesters."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class InsufficientBalance(AppError):
    """Raised when a reservation exceeds the available leave days of an account."""
    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Insufficient leave balance. Available: {available}, Requested: {requested}",
            status_code=409,
            details={"requested": requested, "available": available},
        )

class UnauthorizedTransition(AppError):
    """Raised when the actor is not allowed to move the request out of its current step."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=403, details=details)

class Conflict(AppError):
    """Raised for double decisions, double cancels and moves out of terminal states."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)

class ScheduleConflict(AppError):
    """Raised when a proposed booking collides with an existing schedule entry."""
    def __init__(self, instructor_id: str, conflicts: list[dict]):
        super().__init__(
            f"Instructor {instructor_id} already has {len(conflicts)} conflicting period(s)",
            status_code=409,
            details={"instructor_id": instructor_id, "conflicts": conflicts},
        )
        self.instructor_id = instructor_id
        self.conflicts = conflicts

class NoSubstituteAvailable(AppError):
    """Raised when a candidate pool is exhausted without a conflict-free placement."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)
