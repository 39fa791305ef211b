"""
Identity verification backends.

``disabled`` always yields one fixed identity (development);
``token`` verifies a bearer JWT. The backend is picked from AUTH_MODE.
"""
import logging
from typing import Optional
from jose import JWTError, jwt
from pydantic import BaseModel
from cmdb.config import Settings

logger = logging.getLogger(__name__)

ROLE_HIERARCHY = {
    "admin": 3,
    "operator": 2,
    "readonly": 1,
}


class Identity(BaseModel):
    username: str
    role: str


class IdentityError(Exception):
    """Token missing, malformed, expired or carrying no subject."""


class IdentityVerifier:
    def verify(self, token: Optional[str]) -> Identity:
        raise NotImplementedError


class DisabledIdentityVerifier(IdentityVerifier):
    def __init__(self, username: str = "admin", role: str = "admin"):
        self.identity = Identity(username=username, role=role)

    def verify(self, token: Optional[str]) -> Identity:
        return self.identity


class TokenIdentityVerifier(IdentityVerifier):
    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def verify(self, token: Optional[str]) -> Identity:
        if not token:
            raise IdentityError("Missing bearer token")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            raise IdentityError(f"Invalid token: {e}")
        username = payload.get("sub")
        if not username:
            raise IdentityError("Token has no subject")
        return Identity(username=str(username), role=payload.get("role") or "readonly")


def build_identity_verifier(settings: Settings) -> IdentityVerifier:
    mode = settings.AUTH_MODE.lower()
    if mode == "disabled":
        logger.warning("Authentication disabled: every request runs as %s (%s)",
                       settings.DEV_USERNAME, settings.DEV_ROLE)
        return DisabledIdentityVerifier(settings.DEV_USERNAME, settings.DEV_ROLE)
    if mode == "token":
        return TokenIdentityVerifier(settings.JWT_SECRET_KEY, settings.JWT_ALGORITHM)
    raise ValueError(f"Unknown AUTH_MODE: {settings.AUTH_MODE}")
