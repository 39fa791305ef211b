"""
Auth API
Reports the identity the current credentials resolve to. Tokens are issued elsewhere.
"""
from fastapi import APIRouter, Depends

from cmdb.middleware.identity import get_current_identity
from cmdb.services.identity import Identity

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.get("/me", response_model=Identity)
async def get_me(identity: Identity = Depends(get_current_identity)):
    return identity
