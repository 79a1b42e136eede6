from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from backoffice.core.config import Settings, get_settings


_basic = HTTPBasic(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


def credentials_match(credentials: HTTPBasicCredentials, settings: Settings) -> bool:
    # Both comparisons run so timing does not reveal which half was wrong.
    user_ok = secrets.compare_digest(credentials.username.encode(), settings.basic_auth_username.encode())
    password_ok = secrets.compare_digest(credentials.password.encode(), settings.basic_auth_password.encode())
    return user_ok and password_ok


def require_basic_auth(credentials: HTTPBasicCredentials | None = Depends(_basic)) -> str:
    """Resolve the acting operator; the returned username is what lands in the audit trail."""
    if credentials is None:
        raise _unauthorized("Authentication required")
    if not credentials_match(credentials, get_settings()):
        raise _unauthorized("Invalid credentials")
    return credentials.username
