"""
api/routes/v1/identity.py -- Unified "who am I" across both identity sources.

Routes:
  GET /api/v1/me  -- the calling principal (staff session or signed-in customer)
"""

from fastapi import APIRouter, Depends

from api.models import PrincipalResponse
from auth.dependencies import get_principal
from auth.models import Principal

router = APIRouter()


@router.get("/me", response_model=PrincipalResponse)
async def whoami(principal: Principal = Depends(get_principal)) -> PrincipalResponse:
    return PrincipalResponse(
        user_id=principal.user_id,
        email=principal.email,
        role=principal.role,
        source=principal.source,
    )
