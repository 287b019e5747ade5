# ============================================================================
# FILE: app/api/dependencies.py
# Viewer resolution from the backend-issued JWT and per-request services
# ============================================================================
from fastapi import Depends, HTTPException, status, Request, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import ValidationError
from jose import JWTError, jwt

from app.config.settings import settings
from app.schemas.calendar_events import VisibleRange
from app.schemas.scheduling import Viewer
from app.services.backend.scheduling_api_client import SchedulingApiClient
from app.services.calendar.calendar_session import CalendarSession

# ============================================================================
# Security Schemes
# ============================================================================

jwt_security = HTTPBearer(
    scheme_name="JWT Bearer Token",
    description="Access token issued by the scheduling backend"
)


# ============================================================================
# JWT Token Functions
# ============================================================================

def verify_access_token(token: str) -> dict:
    """
    Verify and decode a JWT access token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Tokens without a type claim are accepted; refresh tokens are not
    if payload.get("type", "access") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


# ============================================================================
# Viewer Dependencies
# ============================================================================

async def get_current_viewer(
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security)
) -> Viewer:
    """
    Dependency resolving the calendar viewer from the access token.

    Raises:
        HTTPException 401: If the token is invalid or has no subject
        HTTPException 403: If the role is not one the calendar knows
    """
    payload = verify_access_token(credentials.credentials)

    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID in token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return Viewer.from_claims(payload)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e)
        )


def get_api_client(
        request: Request,
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security)
) -> SchedulingApiClient:
    """Backend client carrying the caller's token and correlation id"""
    return SchedulingApiClient(
        request.app.state.http_client,
        token=credentials.credentials,
        correlation_id=getattr(request.state, "correlation_id", None),
    )


def get_calendar_session(
        request: Request,
        viewer: Viewer = Depends(get_current_viewer),
        api: SchedulingApiClient = Depends(get_api_client)
) -> CalendarSession:
    return request.app.state.calendar_sessions.session_for(viewer, api)


def get_visible_range(
        start: str = Query(..., description="Range start, YYYY-MM-DD HH:mm:ss or ISO 8601"),
        end: str = Query(..., description="Range end (exclusive)")
) -> VisibleRange:
    try:
        return VisibleRange(start=start, end=end)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False)
        )
