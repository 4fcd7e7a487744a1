from fastapi import APIRouter, Depends, status

from identity.api.deps import get_credential_linker, get_current_account
from identity.models.account import Account
from identity.models.person import Person
from identity.schemas.person import (
    AccountSummary,
    LinkAccountRequest,
    LinkRFIDRequest,
    PersonProfileResponse,
    RFIDCardResponse,
)
from identity.services.credential_linker import CredentialLinker

router = APIRouter(prefix="/persons", tags=["Persons"])


def _profile_response(person: Person) -> PersonProfileResponse:
    account = None
    if person.account is not None:
        account = AccountSummary(
            id=person.account.id,
            email=person.account.email,
            active=person.account.active,
            has_pin=person.account.has_pin(),
            pin_attempts=person.account.pin_attempts or 0,
            pin_locked_at=person.account.pin_locked_at,
        )
    card = RFIDCardResponse.model_validate(person.rfid_card) if person.rfid_card is not None else None
    return PersonProfileResponse(
        id=person.id,
        first_name=person.first_name,
        last_name=person.last_name,
        account=account,
        rfid_card=card,
    )


@router.get("/rfid-cards/available", response_model=list[RFIDCardResponse])
def list_available_rfid_cards(
    current_account: Account = Depends(get_current_account),
    linker: CredentialLinker = Depends(get_credential_linker),
):
    return linker.list_available_rfid_cards()


@router.get("/{person_id}/profile", response_model=PersonProfileResponse)
def get_person_profile(
    person_id: int,
    current_account: Account = Depends(get_current_account),
    linker: CredentialLinker = Depends(get_credential_linker),
):
    return _profile_response(linker.get_full_profile(person_id))


@router.post("/{person_id}/account", response_model=PersonProfileResponse)
def link_account(
    person_id: int,
    body: LinkAccountRequest,
    current_account: Account = Depends(get_current_account),
    linker: CredentialLinker = Depends(get_credential_linker),
):
    linker.link_account(person_id, body.account_id)
    return _profile_response(linker.get_full_profile(person_id))


@router.delete("/{person_id}/account", status_code=status.HTTP_204_NO_CONTENT)
def unlink_account(
    person_id: int,
    current_account: Account = Depends(get_current_account),
    linker: CredentialLinker = Depends(get_credential_linker),
):
    linker.unlink_account(person_id)


@router.post("/{person_id}/rfid", response_model=RFIDCardResponse)
def link_rfid_tag(
    person_id: int,
    body: LinkRFIDRequest,
    current_account: Account = Depends(get_current_account),
    linker: CredentialLinker = Depends(get_credential_linker),
):
    """Assign a tag, moving it away from whoever held it before."""
    return linker.link_rfid_tag(person_id, body.tag_id)


@router.delete("/{person_id}/rfid", status_code=status.HTTP_204_NO_CONTENT)
def unlink_rfid_tag(
    person_id: int,
    current_account: Account = Depends(get_current_account),
    linker: CredentialLinker = Depends(get_credential_linker),
):
    linker.unlink_rfid_tag(person_id)
