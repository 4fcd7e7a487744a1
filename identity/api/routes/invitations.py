from fastapi import APIRouter, Depends, Request, status

from identity.api.deps import get_guardian_service
from identity.core.rate_limit import limiter
from identity.schemas.guardian import (
    InvitationAcceptRequest,
    InvitationValidationResponse,
    ParentAccountResponse,
)
from identity.services.guardian_service import GuardianService

router = APIRouter(prefix="/guardian-invitations", tags=["Guardian Invitations"])


@router.get("/{token}", response_model=InvitationValidationResponse)
@limiter.limit("20/minute")
def validate_invitation(
    token: str,
    request: Request,
    service: GuardianService = Depends(get_guardian_service),
):
    """Public: show who the invitation is for before the guardian picks a password."""
    return service.validate_invitation(token)


@router.post("/{token}/accept", response_model=ParentAccountResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def accept_invitation(
    token: str,
    body: InvitationAcceptRequest,
    request: Request,
    service: GuardianService = Depends(get_guardian_service),
):
    return service.accept_invitation(token, body.password, body.confirm_password)
