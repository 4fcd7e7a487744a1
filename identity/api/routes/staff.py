import logging

from fastapi import APIRouter, Depends, Request

from identity.api.deps import get_current_account, get_pin_authenticator
from identity.core.rate_limit import limiter
from identity.models.account import Account
from identity.models.staff import Staff
from identity.schemas.person import AccountSummary, PINValidateRequest, SetPINRequest, StaffResponse
from identity.services.pin_authenticator import PINAuthenticator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/staff", tags=["Staff"])


def _staff_response(staff: Staff) -> StaffResponse:
    return StaffResponse(
        id=staff.id,
        person_id=staff.person_id,
        first_name=staff.person.first_name,
        last_name=staff.person.last_name,
        position=staff.position,
    )


def _account_summary(account: Account) -> AccountSummary:
    return AccountSummary(
        id=account.id,
        email=account.email,
        active=account.active,
        has_pin=account.has_pin(),
        pin_attempts=account.pin_attempts or 0,
        pin_locked_at=account.pin_locked_at,
    )


@router.post("/pin/validate", response_model=StaffResponse)
@limiter.limit("10/minute")
def validate_pin(
    body: PINValidateRequest,
    request: Request,
    authenticator: PINAuthenticator = Depends(get_pin_authenticator),
):
    """PIN pad login: the PIN alone identifies the staff member."""
    staff = authenticator.validate_any_account(body.pin)
    request.state.account_id = staff.person.account_id
    return _staff_response(staff)


@router.post("/{staff_id}/pin/validate", response_model=StaffResponse)
@limiter.limit("10/minute")
def validate_staff_pin(
    staff_id: int,
    body: PINValidateRequest,
    request: Request,
    authenticator: PINAuthenticator = Depends(get_pin_authenticator),
):
    staff = authenticator.validate_for_account(staff_id, body.pin)
    request.state.account_id = staff.person.account_id
    return _staff_response(staff)


@router.put("/accounts/{account_id}/pin", response_model=AccountSummary)
def set_pin(
    account_id: int,
    body: SetPINRequest,
    current_account: Account = Depends(get_current_account),
    authenticator: PINAuthenticator = Depends(get_pin_authenticator),
):
    account = authenticator.set_pin(account_id, body.pin)
    logger.info(f"PIN set for account {account_id} by account {current_account.id}")
    return _account_summary(account)


@router.post("/accounts/{account_id}/pin/reset", response_model=AccountSummary)
@limiter.limit("10/minute")
def reset_pin_lockout(
    account_id: int,
    request: Request,
    current_account: Account = Depends(get_current_account),
    authenticator: PINAuthenticator = Depends(get_pin_authenticator),
):
    return _account_summary(authenticator.reset_lockout(account_id))
