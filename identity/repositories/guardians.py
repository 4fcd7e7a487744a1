from datetime import datetime, timezone

from sqlalchemy import func, or_

from identity.models.guardian import GuardianProfile, GuardianPhoneNumber, StudentGuardian
from identity.models.invitation import GuardianInvitation
from identity.repositories.base import Repository


class GuardianProfileRepository(Repository[GuardianProfile]):
    model = GuardianProfile

    def find_by_email(self, email: str) -> GuardianProfile | None:
        return (
            self.db.query(GuardianProfile)
            .filter(func.lower(GuardianProfile.email) == email.strip().lower())
            .order_by(GuardianProfile.has_account.desc(), GuardianProfile.id)
            .first()
        )

    def find_without_account(self) -> list[GuardianProfile]:
        return (
            self.db.query(GuardianProfile)
            .filter(GuardianProfile.has_account == False)  # noqa: E712
            .order_by(GuardianProfile.last_name, GuardianProfile.first_name)
            .all()
        )

    def find_invitable(self) -> list[GuardianProfile]:
        return (
            self.db.query(GuardianProfile)
            .filter(
                GuardianProfile.has_account == False,  # noqa: E712
                GuardianProfile.email.is_not(None),
                GuardianProfile.email != "",
            )
            .order_by(GuardianProfile.last_name, GuardianProfile.first_name)
            .all()
        )

    def list_with_options(self, search: str | None = None, limit: int = 50, offset: int = 0) -> list[GuardianProfile]:
        query = self.db.query(GuardianProfile)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    GuardianProfile.first_name.ilike(pattern),
                    GuardianProfile.last_name.ilike(pattern),
                    GuardianProfile.email.ilike(pattern),
                )
            )
        return (
            query.order_by(GuardianProfile.last_name, GuardianProfile.first_name, GuardianProfile.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

    def link_account(self, profile: GuardianProfile, account_id: int) -> None:
        profile.account_id = account_id
        profile.has_account = True
        self.db.flush()


class GuardianPhoneNumberRepository(Repository[GuardianPhoneNumber]):
    model = GuardianPhoneNumber

    def find_by_guardian_id(self, guardian_id: int) -> list[GuardianPhoneNumber]:
        return (
            self.db.query(GuardianPhoneNumber)
            .filter(GuardianPhoneNumber.guardian_profile_id == guardian_id)
            .order_by(GuardianPhoneNumber.priority, GuardianPhoneNumber.id)
            .all()
        )

    def count_by_guardian_id(self, guardian_id: int) -> int:
        return (
            self.db.query(func.count(GuardianPhoneNumber.id))
            .filter(GuardianPhoneNumber.guardian_profile_id == guardian_id)
            .scalar()
        )

    def get_next_priority(self, guardian_id: int) -> int:
        current = (
            self.db.query(func.max(GuardianPhoneNumber.priority))
            .filter(GuardianPhoneNumber.guardian_profile_id == guardian_id)
            .scalar()
        )
        return (current or 0) + 1

    def unset_all_primary(self, guardian_id: int) -> None:
        self.db.query(GuardianPhoneNumber).filter(
            GuardianPhoneNumber.guardian_profile_id == guardian_id,
            GuardianPhoneNumber.is_primary == True,  # noqa: E712
        ).update({GuardianPhoneNumber.is_primary: False}, synchronize_session="fetch")
        self.db.flush()

    def set_primary(self, phone: GuardianPhoneNumber) -> None:
        self.unset_all_primary(phone.guardian_profile_id)
        phone.is_primary = True
        self.db.flush()


class StudentGuardianRepository(Repository[StudentGuardian]):
    model = StudentGuardian

    def find_by_guardian_profile_id(self, guardian_profile_id: int) -> list[StudentGuardian]:
        return (
            self.db.query(StudentGuardian)
            .filter(StudentGuardian.guardian_profile_id == guardian_profile_id)
            .order_by(StudentGuardian.id)
            .all()
        )

    def find_by_student_id(self, student_id: int) -> list[StudentGuardian]:
        return (
            self.db.query(StudentGuardian)
            .filter(StudentGuardian.student_id == student_id)
            .order_by(StudentGuardian.emergency_priority, StudentGuardian.id)
            .all()
        )

    def find_pair(self, student_id: int, guardian_profile_id: int) -> StudentGuardian | None:
        return (
            self.db.query(StudentGuardian)
            .filter(
                StudentGuardian.student_id == student_id,
                StudentGuardian.guardian_profile_id == guardian_profile_id,
            )
            .first()
        )


class GuardianInvitationRepository(Repository[GuardianInvitation]):
    model = GuardianInvitation

    def find_by_token(self, token: str) -> GuardianInvitation | None:
        return self.db.query(GuardianInvitation).filter(GuardianInvitation.token == token).first()

    def find_by_guardian_profile_id(self, guardian_profile_id: int) -> list[GuardianInvitation]:
        return (
            self.db.query(GuardianInvitation)
            .filter(GuardianInvitation.guardian_profile_id == guardian_profile_id)
            .order_by(GuardianInvitation.id)
            .all()
        )

    def find_pending(self) -> list[GuardianInvitation]:
        """Invitations that are neither accepted nor expired."""
        return (
            self.db.query(GuardianInvitation)
            .filter(
                GuardianInvitation.accepted_at.is_(None),
                GuardianInvitation.expires_at > datetime.now(timezone.utc),
            )
            .order_by(GuardianInvitation.expires_at)
            .all()
        )

    def mark_as_accepted(self, invitation: GuardianInvitation) -> None:
        invitation.accepted_at = datetime.now(timezone.utc)
        self.db.flush()

    def delete_expired(self) -> int:
        deleted = (
            self.db.query(GuardianInvitation)
            .filter(
                GuardianInvitation.accepted_at.is_(None),
                GuardianInvitation.expires_at < datetime.now(timezone.utc),
            )
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return deleted

    def delete_expired_for_profile(self, guardian_profile_id: int) -> int:
        deleted = (
            self.db.query(GuardianInvitation)
            .filter(
                GuardianInvitation.guardian_profile_id == guardian_profile_id,
                GuardianInvitation.accepted_at.is_(None),
                GuardianInvitation.expires_at < datetime.now(timezone.utc),
            )
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return deleted

    def update_email_status(
        self,
        invitation_id: int,
        sent_at: datetime | None,
        error: str | None,
        retry_count: int,
    ) -> bool:
        """Record the latest delivery outcome. Returns False when the invitation is gone."""
        updated = (
            self.db.query(GuardianInvitation)
            .filter(GuardianInvitation.id == invitation_id)
            .update(
                {
                    GuardianInvitation.email_sent_at: sent_at,
                    GuardianInvitation.email_error: error,
                    GuardianInvitation.email_retry_count: retry_count,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return updated > 0
