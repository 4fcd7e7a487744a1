import logging

from fastapi import APIRouter, Depends, Query, status

from identity.api.deps import get_current_account, get_guardian_service
from identity.models.account import Account
from identity.schemas.guardian import (
    GuardianCreate,
    GuardianResponse,
    GuardianStudentResponse,
    GuardianUpdate,
    GuardianWithInvitationResponse,
    InvitationResponse,
    PhoneNumberCreate,
    PhoneNumberResponse,
    PhoneNumberUpdate,
    StudentGuardianCreate,
    StudentGuardianResponse,
)
from identity.services.guardian_service import GuardianService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/guardians", tags=["Guardians"])


@router.post("/", response_model=GuardianResponse, status_code=status.HTTP_201_CREATED)
def create_guardian(
    data: GuardianCreate,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.create_guardian(data)


@router.post("/with-invitation", response_model=GuardianWithInvitationResponse, status_code=status.HTTP_201_CREATED)
def create_guardian_with_invitation(
    data: GuardianCreate,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    """Create a guardian and email them an invitation in one step."""
    profile, invitation = service.create_guardian_with_invitation(data, created_by=current_account.id)
    return GuardianWithInvitationResponse(
        guardian=GuardianResponse.model_validate(profile),
        invitation=InvitationResponse.model_validate(invitation),
    )


@router.get("/", response_model=list[GuardianResponse])
def list_guardians(
    search: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.list_guardians(search=search, limit=limit, offset=offset)


@router.get("/without-account", response_model=list[GuardianResponse])
def list_guardians_without_account(
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.get_guardians_without_account()


@router.get("/invitable", response_model=list[GuardianResponse])
def list_invitable_guardians(
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.get_invitable_guardians()


@router.get("/invitations/pending", response_model=list[InvitationResponse])
def list_pending_invitations(
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.get_pending_invitations()


# ── Phone numbers by id ──────────────────────────────────────

@router.put("/phone-numbers/{phone_id}", response_model=PhoneNumberResponse)
def update_phone_number(
    phone_id: int,
    data: PhoneNumberUpdate,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.update_phone_number(phone_id, data)


@router.delete("/phone-numbers/{phone_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_phone_number(
    phone_id: int,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    service.delete_phone_number(phone_id)


@router.post("/phone-numbers/{phone_id}/primary", response_model=PhoneNumberResponse)
def set_primary_phone(
    phone_id: int,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.set_primary_phone(phone_id)


# ── Single guardian ──────────────────────────────────────────

@router.get("/{guardian_id}", response_model=GuardianResponse)
def get_guardian(
    guardian_id: int,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.get_guardian(guardian_id)


@router.put("/{guardian_id}", response_model=GuardianResponse)
def update_guardian(
    guardian_id: int,
    data: GuardianUpdate,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.update_guardian(guardian_id, data)


@router.delete("/{guardian_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_guardian(
    guardian_id: int,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    service.delete_guardian(guardian_id)


@router.post("/{guardian_id}/invitation", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
def send_invitation(
    guardian_id: int,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.send_invitation(guardian_id, created_by=current_account.id)


@router.get("/{guardian_id}/students", response_model=list[GuardianStudentResponse])
def list_guardian_students(
    guardian_id: int,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    service.get_guardian(guardian_id)
    return [
        GuardianStudentResponse(
            student_id=entry.student.id,
            full_name=entry.student.person.full_name if entry.student.person else "",
            school_class=entry.student.school_class,
            relationship=StudentGuardianResponse.model_validate(entry.relationship),
        )
        for entry in service.get_guardian_students(guardian_id)
    ]


@router.post("/{guardian_id}/students", response_model=StudentGuardianResponse, status_code=status.HTTP_201_CREATED)
def link_guardian_to_student(
    guardian_id: int,
    data: StudentGuardianCreate,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.link_guardian_to_student(guardian_id, data)


@router.delete("/{guardian_id}/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_guardian_from_student(
    guardian_id: int,
    student_id: int,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    service.remove_guardian_from_student(student_id, guardian_id)


@router.get("/{guardian_id}/phone-numbers", response_model=list[PhoneNumberResponse])
def list_phone_numbers(
    guardian_id: int,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.get_guardian_phone_numbers(guardian_id)


@router.post("/{guardian_id}/phone-numbers", response_model=PhoneNumberResponse, status_code=status.HTTP_201_CREATED)
def add_phone_number(
    guardian_id: int,
    data: PhoneNumberCreate,
    current_account: Account = Depends(get_current_account),
    service: GuardianService = Depends(get_guardian_service),
):
    return service.add_phone_number(guardian_id, data)
