"""Authentication dependencies for FastAPI routes."""

from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from medrecord.db.session import get_db
from medrecord.models.user import User
from medrecord.auth import jwt

_bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the authenticated user from the Authorization bearer token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )

    payload = jwt.get_current_user_from_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    # Accept either user id or email in sub
    subject = str(payload["sub"])
    qry = db.query(User)
    if "@" in subject:
        user = qry.filter(User.email == subject).first()
    else:
        user = qry.filter(User.id == subject).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    # per-user rate limiting keys off this
    request.state.user_id = str(user.id)
    return user


def require_roles(*roles: str) -> Callable[..., User]:
    allowed = set(roles)

    def _dependency(user: User = Depends(get_current_user)) -> User:
        if getattr(user, "role", None) not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role",
            )
        return user

    return _dependency


# Export and record routes
require_clinician = require_roles("admin", "doctor")
