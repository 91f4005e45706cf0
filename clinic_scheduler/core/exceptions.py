from fastapi import HTTPException, status

# Scheduling exceptions
class ValidationError(HTTPException):
    def __init__(self, detail: str = "Invalid request"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )

class SlotUnavailableError(HTTPException):
    def __init__(self, detail: str = "Time slot not available"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )

class ConflictError(HTTPException):
    def __init__(self, detail: str = "Request conflicts with existing data"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )

class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )

class RescheduleLimitError(HTTPException):
    def __init__(self, detail: str = "Reschedule limit reached"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )

class PersistenceError(HTTPException):
    def __init__(self, detail: str = "Storage is temporarily unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
        )
