from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from identity.core.security import decode_access_token
from identity.db.database import get_db
from identity.db.unit_of_work import UnitOfWork
from identity.models.account import Account
from identity.services.credential_linker import CredentialLinker
from identity.services.guardian_service import GuardianService
from identity.services.notification_dispatcher import NotificationDispatcher
from identity.services.pin_authenticator import PINAuthenticator

# Tokens are issued by the auth service; the URL only documents where.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_uow(db: Session = Depends(get_db)) -> UnitOfWork:
    return UnitOfWork(db)


def get_dispatcher(request: Request) -> NotificationDispatcher | None:
    return getattr(request.app.state, "dispatcher", None)


def get_current_account(
    request: Request,
    token: str = Depends(oauth2_scheme),
    uow: UnitOfWork = Depends(get_uow),
) -> Account:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_access_token(token)
    if payload is None or payload.get("sub") is None:
        raise credentials_exception

    try:
        account_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise credentials_exception

    account = uow.accounts.find_by_id(account_id)
    if account is None or not account.active:
        raise credentials_exception
    request.state.account_id = account.id
    return account


def get_guardian_service(
    uow: UnitOfWork = Depends(get_uow),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
) -> GuardianService:
    return GuardianService(uow, dispatcher)


def get_credential_linker(uow: UnitOfWork = Depends(get_uow)) -> CredentialLinker:
    return CredentialLinker(uow)


def get_pin_authenticator(uow: UnitOfWork = Depends(get_uow)) -> PINAuthenticator:
    return PINAuthenticator(uow)
