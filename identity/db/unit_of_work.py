"""Unit of work: one SQLAlchemy session plus every repository bound to it.

Services receive a ``UnitOfWork`` instead of building their own repositories,
so code running inside ``run`` automatically writes through the same
transaction.
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from identity.repositories.accounts import AccountRepository, AccountParentRepository
from identity.repositories.guardians import (
    GuardianInvitationRepository,
    GuardianPhoneNumberRepository,
    GuardianProfileRepository,
    StudentGuardianRepository,
)
from identity.repositories.persons import (
    PersonRepository,
    RFIDCardRepository,
    StaffRepository,
    StudentRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnitOfWork:
    def __init__(self, db: Session):
        self.db = db
        self.persons = PersonRepository(db)
        self.rfid_cards = RFIDCardRepository(db)
        self.accounts = AccountRepository(db)
        self.parent_accounts = AccountParentRepository(db)
        self.staff = StaffRepository(db)
        self.students = StudentRepository(db)
        self.guardian_profiles = GuardianProfileRepository(db)
        self.guardian_phone_numbers = GuardianPhoneNumberRepository(db)
        self.student_guardians = StudentGuardianRepository(db)
        self.guardian_invitations = GuardianInvitationRepository(db)
        self._depth = 0
        self._after_commit: list[Callable[[], None]] = []

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def run(self, fn: Callable[["UnitOfWork"], T]) -> T:
        """Run ``fn`` atomically.

        Commits when ``fn`` returns and rolls back when it raises. A nested
        call joins the outer unit; only the outermost call commits.
        """
        if self._depth:
            return fn(self)

        self._depth += 1
        try:
            result = fn(self)
            self.db.commit()
        except BaseException:
            self.db.rollback()
            self._after_commit.clear()
            raise
        finally:
            self._depth -= 1

        self._fire_after_commit()
        return result

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Schedule ``callback`` for after the current unit commits.

        Outside ``run`` the callback fires on the next ``commit()``.
        """
        self._after_commit.append(callback)

    def commit(self) -> None:
        if self._depth:
            # The enclosing run() owns the commit
            return
        self.db.commit()
        self._fire_after_commit()

    def rollback(self) -> None:
        self.db.rollback()
        self._after_commit.clear()

    def _fire_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                # State is already committed; side effects are best-effort
                logger.exception("Post-commit callback failed")
