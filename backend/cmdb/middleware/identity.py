from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from cmdb.services.identity import Identity, IdentityError, ROLE_HIERARCHY

security = HTTPBearer(auto_error=False)


async def get_current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    verifier = request.app.state.identity_verifier
    token = credentials.credentials if credentials else None
    try:
        identity = verifier.verify(token)
    except IdentityError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e) or "Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if identity.role not in ROLE_HIERARCHY:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role: {identity.role}",
        )
    return identity


def require_roles(*roles: str):
    """Dependency factory: requires the caller to have one of the specified roles."""
    async def role_checker(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {roles}",
            )
        return identity
    return role_checker


def require_admin():
    return require_roles("admin")


def require_operator_or_above():
    return require_roles("admin", "operator")


def require_any_role():
    return require_roles("admin", "operator", "readonly")
