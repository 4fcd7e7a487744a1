from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from identity.core.exceptions import (
    AlreadyAcceptedError,
    AlreadyExistsError,
    ExpiredError,
    GuardianNotFoundError,
    InvitationNotFoundError,
    PendingInvitationError,
    StudentNotFoundError,
    ValidationFailedError,
)
from identity.models.account import AccountParent
from identity.models.guardian import GuardianProfile, StudentGuardian
from identity.models.invitation import GuardianInvitation
from identity.repositories.persons import StudentRepository
from identity.schemas.guardian import GuardianCreate
from identity.services.guardian_service import GuardianService
from identity.services.notification_dispatcher import DeliveryResult, DeliveryStatus

PASSWORD = "Password123!"


@pytest.fixture()
def service(uow, dispatcher):
    return GuardianService(uow, dispatcher)


def _naive(value):
    # SQLite hands datetimes back without tzinfo
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _link_student(db_session, make_student, profile, first="Mia", last="Weber"):
    student = make_student(first, last)
    db_session.add(StudentGuardian(student_id=student.id, guardian_profile_id=profile.id))
    db_session.commit()
    return student


def _expire(db_session, invitation_id):
    invitation = db_session.get(GuardianInvitation, invitation_id)
    invitation.expires_at = datetime.now(timezone.utc) - timedelta(hours=1)
    db_session.commit()


# ── Creating guardians ───────────────────────────────────────

class TestCreateGuardian:
    def test_applies_defaults(self, service):
        profile = service.create_guardian(GuardianCreate(first_name="Greta", last_name="Hoffmann"))

        assert profile.id is not None
        assert profile.preferred_contact_method == "phone"
        assert profile.language_preference == "de"
        assert profile.has_account is False

    def test_keeps_explicit_preferences(self, service):
        profile = service.create_guardian(GuardianCreate(
            first_name="Greta", last_name="Hoffmann",
            preferred_contact_method="email", language_preference="en",
        ))
        assert profile.preferred_contact_method == "email"
        assert profile.language_preference == "en"


class TestCreateGuardianWithInvitation:
    def test_creates_profile_and_invitation(self, service, dispatcher, admin_account_id):
        profile, invitation = service.create_guardian_with_invitation(
            GuardianCreate(first_name="Greta", last_name="Hoffmann", email="g@example.com"),
            created_by=admin_account_id,
        )

        assert invitation.guardian_profile_id == profile.id
        assert invitation.created_by == admin_account_id
        assert len(dispatcher.requests) == 1
        assert dispatcher.messages[0].to_email == "g@example.com"

    def test_requires_email(self, service, db_session, dispatcher):
        with pytest.raises(ValidationFailedError):
            service.create_guardian_with_invitation(
                GuardianCreate(first_name="Greta", last_name="Hoffmann"), created_by=None
            )
        assert db_session.query(GuardianProfile).count() == 0
        assert dispatcher.requests == []

    def test_rejects_email_of_onboarded_guardian(self, service, make_guardian, dispatcher):
        make_guardian(email="g@example.com", has_account=True)

        with pytest.raises(AlreadyExistsError):
            service.create_guardian_with_invitation(
                GuardianCreate(first_name="Greta", last_name="Hoffmann", email="G@example.com"),
                created_by=None,
            )
        assert dispatcher.requests == []

    def test_rolls_back_profile_when_invitation_fails(self, uow, db_session, dispatcher, monkeypatch):
        service = GuardianService(uow, dispatcher)

        def _boom(*args, **kwargs):
            raise RuntimeError("token source unavailable")

        monkeypatch.setattr("identity.services.guardian_service.generate_token", _boom)

        with pytest.raises(RuntimeError):
            service.create_guardian_with_invitation(
                GuardianCreate(first_name="Greta", last_name="Hoffmann", email="g@example.com"),
                created_by=None,
            )

        assert db_session.query(GuardianProfile).count() == 0
        assert dispatcher.requests == []


# ── Sending invitations ──────────────────────────────────────

class TestSendInvitation:
    def test_creates_pending_invitation(self, service, make_guardian, dispatcher):
        profile = make_guardian()
        before = datetime.now(timezone.utc)

        invitation = service.send_invitation(profile.id, created_by=None)

        assert len(invitation.token) >= 32
        assert invitation.accepted_at is None
        expected = before + timedelta(hours=48)
        assert abs((_naive(invitation.expires_at) - _naive(expected)).total_seconds()) < 60
        assert invitation.is_valid()

    def test_notification_content(self, service, make_guardian, make_student, db_session, dispatcher):
        profile = make_guardian()
        student = make_student("Mia", "Weber")
        db_session.add(StudentGuardian(student_id=student.id, guardian_profile_id=profile.id))
        db_session.commit()

        invitation = service.send_invitation(profile.id, created_by=None)

        request = dispatcher.requests[0]
        assert request.metadata.type == "guardian_invitation"
        assert request.metadata.reference_id == invitation.id
        assert request.metadata.recipient == "g@example.com"
        message = request.message
        assert message.subject == "Einladung zum Eltern-Portal"
        assert message.context["invitation_url"] == (
            f"https://portal.example.com/guardian/invite?token={invitation.token}"
        )
        assert message.context["logo_url"] == "https://portal.example.com/logo.png"
        assert message.context["expiry_hours"] == 48
        assert message.context["student_names"] == ["Mia Weber"]
        assert invitation.token in message.html_content
        assert "Mia Weber" in message.html_content

    def test_missing_student_sends_without_names(self, service, make_guardian, make_student, db_session,
                                                 dispatcher, monkeypatch):
        profile = make_guardian()
        _link_student(db_session, make_student, profile)
        monkeypatch.setattr(StudentRepository, "find_by_id", lambda self, id: None)

        invitation = service.send_invitation(profile.id, created_by=None)

        assert len(dispatcher.requests) == 1
        assert dispatcher.messages[0].context["student_names"] == []
        assert invitation.token in dispatcher.messages[0].html_content

    def test_student_lookup_error_keeps_invitation(self, service, make_guardian, make_student, db_session,
                                                   dispatcher, monkeypatch):
        profile = make_guardian()
        _link_student(db_session, make_student, profile)

        def _boom(self, id):
            raise RuntimeError("students table unavailable")

        monkeypatch.setattr(StudentRepository, "find_by_id", _boom)

        invitation = service.send_invitation(profile.id, created_by=None)

        db_session.expire_all()
        assert db_session.get(GuardianInvitation, invitation.id) is not None
        assert dispatcher.messages[0].context["student_names"] == []

    def test_pending_invitation_blocks_second(self, service, make_guardian, db_session, dispatcher):
        profile = make_guardian()
        service.send_invitation(profile.id, created_by=None)

        with pytest.raises(PendingInvitationError) as exc_info:
            service.send_invitation(profile.id, created_by=None)

        assert isinstance(exc_info.value, AlreadyExistsError)
        assert db_session.query(GuardianInvitation).count() == 1
        assert len(dispatcher.requests) == 1

    def test_expired_invitation_is_replaced(self, service, make_guardian, db_session):
        profile = make_guardian()
        old = service.send_invitation(profile.id, created_by=None)
        old_id, old_token = old.id, old.token
        _expire(db_session, old_id)

        new = service.send_invitation(profile.id, created_by=None)

        assert new.token != old_token
        assert db_session.query(GuardianInvitation).count() == 1
        with pytest.raises(InvitationNotFoundError):
            service.validate_invitation(old_token)

    def test_profile_without_email(self, service, make_guardian, dispatcher):
        profile = make_guardian(email=None)
        with pytest.raises(ValidationFailedError):
            service.send_invitation(profile.id, created_by=None)
        assert dispatcher.requests == []

    def test_profile_with_account(self, service, make_guardian):
        profile = make_guardian(has_account=True)
        with pytest.raises(ValidationFailedError):
            service.send_invitation(profile.id, created_by=None)

    def test_unknown_profile(self, service):
        with pytest.raises(GuardianNotFoundError):
            service.send_invitation(9999, created_by=None)

    def test_works_without_dispatcher(self, uow, make_guardian):
        profile = make_guardian()
        invitation = GuardianService(uow, dispatcher=None).send_invitation(profile.id, created_by=None)
        assert invitation.id is not None

    def test_storage_rejects_two_pending_rows(self, make_guardian, db_session):
        profile = make_guardian()
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        db_session.add(GuardianInvitation(token="t1", guardian_profile_id=profile.id, expires_at=expires))
        db_session.add(GuardianInvitation(token="t2", guardian_profile_id=profile.id, expires_at=expires))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


class TestDeliveryStatus:
    def test_success_is_recorded(self, service, make_guardian, dispatcher, db_session):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)
        request = dispatcher.requests[0]

        request.callback(DeliveryResult(
            metadata=request.metadata, attempt=2, status=DeliveryStatus.SENT, final=True,
        ))

        db_session.expire_all()
        stored = db_session.get(GuardianInvitation, invitation.id)
        assert stored.email_sent_at is not None
        assert stored.email_error is None
        assert stored.email_retry_count == 1

    def test_failure_is_recorded(self, service, make_guardian, dispatcher, db_session):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)
        request = dispatcher.requests[0]

        request.callback(DeliveryResult(
            metadata=request.metadata, attempt=3, status=DeliveryStatus.FAILED,
            error="smtp down", final=True,
        ))

        db_session.expire_all()
        stored = db_session.get(GuardianInvitation, invitation.id)
        assert stored.email_sent_at is None
        assert stored.email_error == "smtp down"
        assert stored.email_retry_count == 3

    def test_missing_invitation_is_ignored(self, service, make_guardian, dispatcher, db_session):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)
        request = dispatcher.requests[0]
        db_session.delete(db_session.get(GuardianInvitation, invitation.id))
        db_session.commit()

        request.callback(DeliveryResult(
            metadata=request.metadata, attempt=1, status=DeliveryStatus.SENT, final=True,
        ))


# ── Validating tokens ────────────────────────────────────────

class TestValidateInvitation:
    def test_valid_token(self, service, make_guardian, make_student, db_session):
        profile = make_guardian()
        for first in ("Mia", "Ben"):
            student = make_student(first, "Hoffmann")
            db_session.add(StudentGuardian(student_id=student.id, guardian_profile_id=profile.id))
        db_session.commit()
        invitation = service.send_invitation(profile.id, created_by=None)

        result = service.validate_invitation(invitation.token)

        assert result.guardian_first_name == "Greta"
        assert result.guardian_last_name == "Hoffmann"
        assert result.email == "g@example.com"
        assert sorted(result.student_names) == ["Ben Hoffmann", "Mia Hoffmann"]

    def test_unknown_token(self, service):
        with pytest.raises(InvitationNotFoundError) as exc_info:
            service.validate_invitation("does-not-exist")
        assert exc_info.value.kind == "not_found"

    def test_expired_token(self, service, make_guardian, db_session):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)
        _expire(db_session, invitation.id)

        with pytest.raises(ExpiredError):
            service.validate_invitation(invitation.token)

    def test_accepted_token(self, service, make_guardian):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)
        service.accept_invitation(invitation.token, PASSWORD, PASSWORD)

        with pytest.raises(AlreadyAcceptedError) as exc_info:
            service.validate_invitation(invitation.token)
        assert exc_info.value.kind == "already_accepted"
        assert str(exc_info.value) == "validate invitation: invitation has already been accepted"

    def test_missing_student_fails_validation(self, service, make_guardian, make_student, db_session, monkeypatch):
        profile = make_guardian()
        _link_student(db_session, make_student, profile)
        invitation = service.send_invitation(profile.id, created_by=None)
        monkeypatch.setattr(StudentRepository, "find_by_id", lambda self, id: None)

        with pytest.raises(StudentNotFoundError) as exc_info:
            service.validate_invitation(invitation.token)
        assert exc_info.value.op == "validate invitation"


# ── Accepting ────────────────────────────────────────────────

class TestAcceptInvitation:
    def test_creates_and_links_account(self, service, make_guardian, db_session):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)

        account = service.accept_invitation(invitation.token, PASSWORD, PASSWORD)

        db_session.expire_all()
        stored_profile = db_session.get(GuardianProfile, profile.id)
        stored_invitation = db_session.get(GuardianInvitation, invitation.id)
        assert account.email == "g@example.com"
        assert account.active is True
        assert account.password_hash != PASSWORD
        assert stored_profile.has_account is True
        assert stored_profile.account_id == account.id
        assert stored_invitation.accepted_at is not None

    def test_second_accept_fails(self, service, make_guardian, db_session):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)
        service.accept_invitation(invitation.token, PASSWORD, PASSWORD)

        with pytest.raises(AlreadyAcceptedError) as exc_info:
            service.accept_invitation(invitation.token, PASSWORD, PASSWORD)
        assert str(exc_info.value) == "accept invitation: invitation has already been accepted"
        assert db_session.query(AccountParent).count() == 1

    def test_password_mismatch_touches_nothing(self, service, make_guardian, db_session):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)

        with pytest.raises(ValidationFailedError):
            service.accept_invitation(invitation.token, PASSWORD, "Password123?")

        db_session.expire_all()
        assert db_session.query(AccountParent).count() == 0
        assert db_session.get(GuardianInvitation, invitation.id).accepted_at is None

    @pytest.mark.parametrize("weak", ["short1!", "alllowercase1!", "NoDigitsHere!", "NoSpecial123"])
    def test_weak_password(self, service, make_guardian, db_session, weak):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)

        with pytest.raises(ValidationFailedError):
            service.accept_invitation(invitation.token, weak, weak)
        assert db_session.query(AccountParent).count() == 0

    def test_expired_token(self, service, make_guardian, db_session):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)
        _expire(db_session, invitation.id)

        with pytest.raises(ExpiredError):
            service.accept_invitation(invitation.token, PASSWORD, PASSWORD)
        assert db_session.query(AccountParent).count() == 0

    def test_existing_parent_account_rolls_back(self, service, make_guardian, db_session):
        profile = make_guardian()
        invitation = service.send_invitation(profile.id, created_by=None)
        db_session.add(AccountParent(email="g@example.com", active=True))
        db_session.commit()

        with pytest.raises(AlreadyExistsError):
            service.accept_invitation(invitation.token, PASSWORD, PASSWORD)

        db_session.expire_all()
        assert db_session.get(GuardianProfile, profile.id).has_account is False
        assert db_session.get(GuardianInvitation, invitation.id).accepted_at is None

    def test_error_carries_operation_chain(self, service):
        with pytest.raises(InvitationNotFoundError) as exc_info:
            service.accept_invitation("nope", PASSWORD, PASSWORD)
        assert str(exc_info.value) == "accept invitation: invitation not found"


# ── Administration ───────────────────────────────────────────

class TestInvitationAdministration:
    def test_pending_excludes_expired_and_accepted(self, service, make_guardian, db_session):
        pending = service.send_invitation(make_guardian(email="a@example.com").id, created_by=None)
        expired = service.send_invitation(make_guardian(email="b@example.com").id, created_by=None)
        accepted = service.send_invitation(make_guardian(email="c@example.com").id, created_by=None)
        _expire(db_session, expired.id)
        service.accept_invitation(accepted.token, PASSWORD, PASSWORD)

        assert [i.id for i in service.get_pending_invitations()] == [pending.id]

    def test_cleanup_deletes_only_expired_unaccepted(self, service, make_guardian, db_session):
        keep = service.send_invitation(make_guardian(email="a@example.com").id, created_by=None)
        drop = service.send_invitation(make_guardian(email="b@example.com").id, created_by=None)
        keep_id, drop_id = keep.id, drop.id
        _expire(db_session, drop_id)

        assert service.cleanup_expired_invitations() == 1

        db_session.expire_all()
        assert db_session.get(GuardianInvitation, keep_id) is not None
        assert db_session.get(GuardianInvitation, drop_id) is None


class TestCleanupJob:
    def test_job_removes_expired(self, service, make_guardian, db_session):
        import asyncio
        from identity.jobs.invitation_cleanup import cleanup_expired_invitations

        invitation = service.send_invitation(make_guardian().id, created_by=None)
        invitation_id = invitation.id
        _expire(db_session, invitation_id)

        asyncio.run(cleanup_expired_invitations())

        db_session.expire_all()
        assert db_session.get(GuardianInvitation, invitation_id) is None

    def test_job_is_registered_on_interval(self):
        from identity.jobs.invitation_cleanup import cleanup_expired_invitations
        from identity.services.scheduler import INVITATION_CLEANUP_JOB_ID, schedule_invitation_cleanup, scheduler

        schedule_invitation_cleanup(30)
        try:
            job = scheduler.get_job(INVITATION_CLEANUP_JOB_ID)
            assert job.func is cleanup_expired_invitations
            assert job.trigger.interval == timedelta(minutes=30)
        finally:
            scheduler.remove_job(INVITATION_CLEANUP_JOB_ID)


class TestOnboardingScenario:
    def test_create_send_accept(self, service, db_session):
        profile = service.create_guardian(GuardianCreate(first_name="Greta", last_name="Hoffmann", email="g@example.com"))
        invitation = service.send_invitation(profile.id, created_by=None)

        account = service.accept_invitation(invitation.token, "Testpass1!", "Testpass1!")

        db_session.expire_all()
        assert db_session.get(GuardianProfile, profile.id).has_account is True
        assert account.email == "g@example.com"
