#app/core/auth_deps.py
from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from app.core.security import decode_token
from app.models.enums import UserRole
from app.policies.rbac import Principal

bearer = HTTPBearer(auto_error=True)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Principal:
    """
    Canonical authentication dependency.

    Guarantees:
    - JWT is valid
    - sub and role are present
    - role is a valid UserRole
    - drivers carry the fleet_manager_id they drive for
    """

    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    user_id = payload.get("sub")
    role = payload.get("role")
    fleet_manager_id = payload.get("fleet_manager_id")

    if not role or not user_id:
        raise HTTPException(status_code=401, detail="Token missing required claims.")

    try:
        role_enum = UserRole(role)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid role in token.")

    if role_enum == UserRole.DRIVER and not fleet_manager_id:
        raise HTTPException(status_code=401, detail="Driver token missing fleet_manager_id claim.")

    principal = Principal(
        user_id=str(user_id),
        role=role_enum,
        fleet_manager_id=str(fleet_manager_id) if fleet_manager_id else None,
    )

    # Make principal available to downstream middleware / handlers
    request.state.principal = principal

    return principal
