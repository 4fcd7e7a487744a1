"""Staff PIN authentication with per-account lockout."""

import logging

from identity.core.exceptions import (
    AccountLockedError,
    AccountNotFoundError,
    InvalidPINError,
    NoAccountError,
    PersonNotFoundError,
    PINNotSetError,
    StaffNotFoundError,
    ValidationFailedError,
    operation,
)
from identity.core.security import validate_pin_format
from identity.db.unit_of_work import UnitOfWork
from identity.models.account import Account
from identity.models.staff import Staff

logger = logging.getLogger(__name__)


class PINAuthenticator:
    """Validates staff PINs.

    Counters are read, incremented and written back without locking, so two
    concurrent failures on one account may count once. Each attempt still
    checks the lock state it read.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    @operation("validate staff PIN")
    def validate_any_account(self, pin: str) -> Staff:
        """Find the staff member whose PIN matches, probing accounts in id order.

        Used on shared PIN pads where the PIN is the only lookup key. Every
        account tried without a match has its failure counter raised, and
        those counters are persisted even when the overall call fails.
        """
        if not pin:
            raise ValidationFailedError("PIN cannot be empty")

        try:
            for account in self.uow.accounts.list_all():
                staff = self._try_account(account, pin)
                if staff is not None:
                    self.uow.commit()
                    return staff
        except BaseException:
            self.uow.rollback()
            raise

        self.uow.commit()
        raise InvalidPINError()

    def _try_account(self, account: Account, pin: str) -> Staff | None:
        if not account.has_pin() or account.is_pin_locked():
            return None

        if not account.verify_pin(pin):
            account.increment_pin_attempts()
            self.uow.accounts.update(account)
            if account.is_pin_locked():
                logger.warning(f"Account {account.id} locked after {account.pin_attempts} failed PIN attempts")
            return None

        person = self.uow.persons.find_by_account_id(account.id)
        if person is None:
            return None
        staff = self.uow.staff.find_by_person_id(person.id)
        if staff is None:
            return None

        account.reset_pin_attempts()
        self.uow.accounts.update(account)
        staff.person = person
        logger.info(f"PIN validated for staff {staff.id}")
        return staff

    @operation("validate staff PIN for specific staff")
    def validate_for_account(self, staff_id: int, pin: str) -> Staff:
        if not pin:
            raise ValidationFailedError("PIN cannot be empty")

        staff = self.uow.staff.find_by_id(staff_id)
        if staff is None:
            raise StaffNotFoundError()

        person = self.uow.persons.find_by_id(staff.person_id)
        if person is None:
            raise PersonNotFoundError("person not found for staff member")

        if person.account_id is None:
            raise NoAccountError()

        account = self.uow.accounts.find_by_id(person.account_id)
        if account is None:
            raise AccountNotFoundError()

        if not account.has_pin():
            raise PINNotSetError()
        if account.is_pin_locked():
            raise AccountLockedError()

        if not account.verify_pin(pin):
            account.increment_pin_attempts()
            self.uow.accounts.update(account)
            self.uow.commit()
            if account.is_pin_locked():
                logger.warning(f"Account {account.id} locked after {account.pin_attempts} failed PIN attempts")
            raise InvalidPINError()

        account.reset_pin_attempts()
        self.uow.accounts.update(account)
        self.uow.commit()

        staff.person = person
        return staff

    @operation("set staff PIN")
    def set_pin(self, account_id: int, pin: str) -> Account:
        error = validate_pin_format(pin)
        if error:
            raise ValidationFailedError(error)

        def _set(uow: UnitOfWork) -> Account:
            account = uow.accounts.find_by_id(account_id)
            if account is None:
                raise AccountNotFoundError()
            account.set_pin(pin)
            account.reset_pin_attempts()
            return uow.accounts.update(account)

        return self.uow.run(_set)

    @operation("reset PIN lockout")
    def reset_lockout(self, account_id: int) -> Account:
        def _reset(uow: UnitOfWork) -> Account:
            account = uow.accounts.find_by_id(account_id)
            if account is None:
                raise AccountNotFoundError()
            account.reset_pin_attempts()
            logger.info(f"PIN lockout reset for account {account_id}")
            return uow.accounts.update(account)

        return self.uow.run(_reset)
