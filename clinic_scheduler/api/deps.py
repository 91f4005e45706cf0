from fastapi import BackgroundTasks, Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List
from datetime import date

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.exceptions import ValidationError
from ..core.security import (
    security, verify_token, AuthenticationError,
    AuthorizationError, UserRole, TokenPayload
)
from ..models.appointment import Appointment, AppointmentStatus
from ..models.user import User
from ..services.notification_service import BackgroundNotificationDispatcher
from ..utils.dates import parse_date

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token = credentials.credentials

    # Verify token
    token_payload = verify_token(token)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Check if token is access token
    if token_payload.token_type not in (None, "access"):
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_user(
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from database."""
    if not token_payload.sub:
        raise AuthenticationError("Invalid token payload")

    user = db.query(User).filter(User.id == token_payload.sub).first()
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_user

    return role_checker

# Specific role dependencies
async def get_admin_user(
    current_user: User = Depends(require_role([UserRole.ADMIN]))
) -> User:
    """Require admin role."""
    return current_user

async def get_doctor_user(
    current_user: User = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN]))
) -> User:
    """Require doctor or admin role."""
    return current_user

# Ownership policies, checked by the routers before calling a service
def ensure_self_or_admin(current_user: User, user_id: int) -> None:
    if current_user.role != UserRole.ADMIN and current_user.id != user_id:
        raise AuthorizationError("You can only act on your own records")

def ensure_appointment_party(current_user: User, appointment: Appointment) -> None:
    if current_user.role == UserRole.ADMIN:
        return
    if current_user.id not in (appointment.patient_id, appointment.doctor_id):
        raise AuthorizationError("Not a party to this appointment")

def ensure_can_set_status(current_user: User, appointment: Appointment, target: str) -> None:
    """Either party may cancel; every other status change is the doctor's call."""
    ensure_appointment_party(current_user, appointment)
    if target == AppointmentStatus.CANCELLED.value:
        return
    if current_user.role == UserRole.PATIENT:
        raise AuthorizationError("Only the doctor can change this appointment's status")

def get_notifier(background_tasks: BackgroundTasks) -> BackgroundNotificationDispatcher:
    return BackgroundNotificationDispatcher(background_tasks)

# Rate limiting dependency
async def booking_rate_limit(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Per-client limit on booking writes."""
    client_ip = request.client.host
    key = f"rate_limit:booking:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, 3600, 1)  # 1 hour window
    else:
        if int(current_requests) >= settings.BOOKING_RATE_LIMIT_PER_HOUR:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )
        redis_client.incr(key)

# Query-string parsing for civil dates
def civil_date(value: str) -> date:
    try:
        return parse_date(value)
    except ValueError as e:
        raise ValidationError(str(e))
