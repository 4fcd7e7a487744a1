import pytest

from identity.core.config import settings
from identity.core.exceptions import (
    AccountLockedError,
    AccountNotFoundError,
    InvalidCredentialError,
    InvalidPINError,
    LockedError,
    NoAccountError,
    PINNotSetError,
    StaffNotFoundError,
    ValidationFailedError,
)
from identity.models.account import Account
from identity.services.pin_authenticator import PINAuthenticator


def _account_of(db_session, staff):
    db_session.expire_all()
    return db_session.get(Account, staff.person.account_id)


# ── PIN scan (any account) ───────────────────────────────────

class TestValidateAnyAccount:
    def test_returns_matching_staff(self, uow, make_staff):
        make_staff("Hans", "Meyer", pin="1111")
        target = make_staff("Lena", "Fischer", pin="2222")

        staff = PINAuthenticator(uow).validate_any_account("2222")

        assert staff.id == target.id
        assert staff.person.first_name == "Lena"

    def test_failed_attempts_are_counted_and_persisted(self, uow, db_session, make_staff):
        first = make_staff("Hans", "Meyer", pin="1111")
        second = make_staff("Lena", "Fischer", pin="2222")

        with pytest.raises(InvalidPINError):
            PINAuthenticator(uow).validate_any_account("9999")

        assert _account_of(db_session, first).pin_attempts == 1
        assert _account_of(db_session, second).pin_attempts == 1

    def test_success_resets_own_counter(self, uow, db_session, make_staff):
        staff = make_staff(pin="1234")
        auth = PINAuthenticator(uow)
        with pytest.raises(InvalidPINError):
            auth.validate_any_account("0000")

        auth.validate_any_account("1234")

        assert _account_of(db_session, staff).pin_attempts == 0

    def test_locked_accounts_are_skipped(self, uow, db_session, make_staff):
        staff = make_staff(pin="1234")
        account = _account_of(db_session, staff)
        account.pin_attempts = settings.pin_max_attempts
        db_session.commit()

        with pytest.raises(InvalidPINError):
            PINAuthenticator(uow).validate_any_account("1234")

    def test_account_without_staff_is_skipped(self, uow, make_account, make_person):
        make_person(account=make_account(pin="1234"))

        with pytest.raises(InvalidPINError):
            PINAuthenticator(uow).validate_any_account("1234")

    def test_empty_pin(self, uow):
        with pytest.raises(ValidationFailedError):
            PINAuthenticator(uow).validate_any_account("")


# ── PIN for a specific staff member ──────────────────────────

class TestValidateForAccount:
    def test_success(self, uow, make_staff):
        staff = make_staff(pin="1234")
        result = PINAuthenticator(uow).validate_for_account(staff.id, "1234")
        assert result.id == staff.id
        assert result.person is not None

    def test_lockout_after_max_attempts(self, uow, db_session, make_staff):
        staff = make_staff(pin="1234")
        auth = PINAuthenticator(uow)

        for _ in range(settings.pin_max_attempts):
            with pytest.raises(InvalidPINError):
                auth.validate_for_account(staff.id, "0000")

        account = _account_of(db_session, staff)
        assert account.pin_attempts == settings.pin_max_attempts
        assert account.pin_locked_at is not None

        with pytest.raises(AccountLockedError) as exc_info:
            auth.validate_for_account(staff.id, "1234")
        assert isinstance(exc_info.value, LockedError)
        assert exc_info.value.kind == "locked"

    def test_reset_lockout_unlocks(self, uow, db_session, make_staff):
        staff = make_staff(pin="1234")
        auth = PINAuthenticator(uow)
        for _ in range(settings.pin_max_attempts):
            with pytest.raises(InvalidPINError):
                auth.validate_for_account(staff.id, "0000")

        auth.reset_lockout(_account_of(db_session, staff).id)

        assert auth.validate_for_account(staff.id, "1234").id == staff.id

    def test_mismatch_counts(self, uow, db_session, make_staff):
        staff = make_staff(pin="1234")
        with pytest.raises(InvalidPINError) as exc_info:
            PINAuthenticator(uow).validate_for_account(staff.id, "4321")
        assert isinstance(exc_info.value, InvalidCredentialError)
        assert _account_of(db_session, staff).pin_attempts == 1

    def test_unknown_staff(self, uow):
        with pytest.raises(StaffNotFoundError):
            PINAuthenticator(uow).validate_for_account(9999, "1234")

    def test_staff_without_account(self, uow, make_staff):
        staff = make_staff(with_account=False)
        with pytest.raises(NoAccountError):
            PINAuthenticator(uow).validate_for_account(staff.id, "1234")

    def test_pin_not_set(self, uow, make_staff):
        staff = make_staff(pin=None)
        with pytest.raises(PINNotSetError) as exc_info:
            PINAuthenticator(uow).validate_for_account(staff.id, "1234")
        assert exc_info.value.kind == "pin_not_set"

    def test_empty_pin(self, uow, make_staff):
        staff = make_staff(pin="1234")
        with pytest.raises(ValidationFailedError):
            PINAuthenticator(uow).validate_for_account(staff.id, "")


# ── PIN administration ───────────────────────────────────────

class TestSetPIN:
    def test_sets_pin_and_clears_lockout(self, uow, db_session, make_account):
        account = make_account(pin="1111", pin_attempts=4)

        PINAuthenticator(uow).set_pin(account.id, "987654")

        db_session.expire_all()
        stored = db_session.get(Account, account.id)
        assert stored.verify_pin("987654")
        assert stored.pin_attempts == 0

    @pytest.mark.parametrize("pin", ["123", "123456789", "12a4", ""])
    def test_rejects_malformed_pin(self, uow, make_account, pin):
        account = make_account()
        with pytest.raises(ValidationFailedError):
            PINAuthenticator(uow).set_pin(account.id, pin)

    def test_unknown_account(self, uow):
        with pytest.raises(AccountNotFoundError):
            PINAuthenticator(uow).set_pin(9999, "1234")
