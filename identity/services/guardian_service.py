"""Guardian profiles, student relationships and the invitation lifecycle.

A guardian profile exists on its own; portal access is granted by sending an
invitation whose token the guardian redeems with a password. Accepting creates
an ``AccountParent`` and links it to the profile in a single transaction.
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from identity.core.config import settings
from identity.core.exceptions import (
    AlreadyAcceptedError,
    AlreadyExistsError,
    ExpiredError,
    GuardianNotFoundError,
    InvitationInvalidError,
    InvitationNotFoundError,
    NotFoundError,
    PendingInvitationError,
    PersonNotFoundError,
    PhoneNumberNotFoundError,
    RelationshipNotFoundError,
    StudentNotFoundError,
    ValidationFailedError,
    operation,
)
from identity.core.security import generate_token, get_password_hash, validate_password_strength
from identity.db.database import SessionLocal
from identity.db.unit_of_work import UnitOfWork
from identity.models.account import AccountParent
from identity.models.guardian import (
    GuardianPhoneNumber,
    GuardianProfile,
    PhoneType,
    RelationshipType,
    StudentGuardian,
)
from identity.models.invitation import GuardianInvitation
from identity.models.student import Student
from identity.repositories.guardians import GuardianInvitationRepository
from identity.schemas.guardian import (
    GuardianCreate,
    GuardianUpdate,
    InvitationValidationResponse,
    PhoneNumberCreate,
    PhoneNumberUpdate,
    StudentGuardianCreate,
    StudentGuardianUpdate,
)
from identity.services.email_service import load_template, render
from identity.services.notification_dispatcher import (
    DeliveryMetadata,
    DeliveryRequest,
    DeliveryResult,
    DeliveryStatus,
    EmailMessage,
    NotificationDispatcher,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTACT_METHOD = "phone"
DEFAULT_LANGUAGE = "de"
INVITATION_EMAIL_SUBJECT = "Einladung zum Eltern-Portal"
INVITATION_DELIVERY_TYPE = "guardian_invitation"


@dataclass
class GuardianWithRelationship:
    profile: GuardianProfile
    relationship: StudentGuardian


@dataclass
class StudentWithRelationship:
    student: Student
    relationship: StudentGuardian


@dataclass(frozen=True)
class InvitationRecipient:
    guardian_profile_id: int
    first_name: str
    last_name: str
    email: str


def _relationship_type(value: str) -> RelationshipType:
    try:
        return RelationshipType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in RelationshipType)
        raise ValidationFailedError(f"invalid relationship type '{value}' (expected one of: {allowed})")


def _phone_type(value: str | None) -> PhoneType | None:
    try:
        return PhoneType(value)
    except ValueError:
        return None


class GuardianService:
    def __init__(
        self,
        uow: UnitOfWork,
        dispatcher: NotificationDispatcher | None = None,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        invitation_expiry: timedelta | None = None,
        frontend_url: str | None = None,
    ):
        self.uow = uow
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.invitation_expiry = invitation_expiry or timedelta(hours=settings.invitation_token_expiry_hours)
        self.frontend_url = (frontend_url or settings.frontend_url).rstrip("/")

    # ── Guardian profiles ────────────────────────────────────────

    @operation("create guardian")
    def create_guardian(self, data: GuardianCreate) -> GuardianProfile:
        def _create(uow: UnitOfWork) -> GuardianProfile:
            profile = GuardianProfile(
                first_name=data.first_name.strip(),
                last_name=data.last_name.strip(),
                email=str(data.email) if data.email else None,
                phone=data.phone,
                mobile_phone=data.mobile_phone,
                address_street=data.address_street,
                address_city=data.address_city,
                address_postal_code=data.address_postal_code,
                preferred_contact_method=data.preferred_contact_method or DEFAULT_CONTACT_METHOD,
                language_preference=data.language_preference or DEFAULT_LANGUAGE,
                occupation=data.occupation,
                employer=data.employer,
                notes=data.notes,
                has_account=False,
            )
            uow.guardian_profiles.create(profile)
            logger.info(f"Created guardian profile {profile.id}")
            return profile

        return self.uow.run(_create)

    @operation("create guardian with invitation")
    def create_guardian_with_invitation(
        self, data: GuardianCreate, created_by: int | None
    ) -> tuple[GuardianProfile, GuardianInvitation]:
        """Create a profile and its first invitation atomically.

        The notification goes out only once both rows are committed.
        """
        if not data.email:
            raise ValidationFailedError("email is required to send an invitation")

        existing = self.uow.guardian_profiles.find_by_email(str(data.email))
        if existing is not None and existing.has_account:
            raise AlreadyExistsError("a guardian with this email already has an account")

        def _create(uow: UnitOfWork) -> tuple[GuardianProfile, GuardianInvitation]:
            profile = self.create_guardian(data)
            invitation = self.send_invitation(profile.id, created_by)
            return profile, invitation

        return self.uow.run(_create)

    @operation("get guardian")
    def get_guardian(self, guardian_id: int) -> GuardianProfile:
        profile = self.uow.guardian_profiles.find_by_id(guardian_id)
        if profile is None:
            raise GuardianNotFoundError()
        return profile

    @operation("get guardian by email")
    def get_guardian_by_email(self, email: str) -> GuardianProfile:
        profile = self.uow.guardian_profiles.find_by_email(email)
        if profile is None:
            raise GuardianNotFoundError()
        return profile

    @operation("update guardian")
    def update_guardian(self, guardian_id: int, data: GuardianUpdate) -> GuardianProfile:
        def _update(uow: UnitOfWork) -> GuardianProfile:
            profile = uow.guardian_profiles.find_by_id(guardian_id)
            if profile is None:
                raise GuardianNotFoundError()

            profile.first_name = data.first_name.strip()
            profile.last_name = data.last_name.strip()
            profile.email = str(data.email) if data.email else None
            profile.phone = data.phone
            profile.mobile_phone = data.mobile_phone
            profile.address_street = data.address_street
            profile.address_city = data.address_city
            profile.address_postal_code = data.address_postal_code
            profile.occupation = data.occupation
            profile.employer = data.employer
            profile.notes = data.notes
            if data.preferred_contact_method:
                profile.preferred_contact_method = data.preferred_contact_method
            if data.language_preference:
                profile.language_preference = data.language_preference
            return uow.guardian_profiles.update(profile)

        return self.uow.run(_update)

    @operation("delete guardian")
    def delete_guardian(self, guardian_id: int) -> None:
        def _delete(uow: UnitOfWork) -> None:
            profile = uow.guardian_profiles.find_by_id(guardian_id)
            if profile is None:
                raise GuardianNotFoundError()
            uow.guardian_profiles.delete(profile)
            logger.info(f"Deleted guardian profile {guardian_id}")

        self.uow.run(_delete)

    @operation("list guardians")
    def list_guardians(self, search: str | None = None, limit: int = 50, offset: int = 0) -> list[GuardianProfile]:
        return self.uow.guardian_profiles.list_with_options(search=search, limit=limit, offset=offset)

    @operation("get guardians without account")
    def get_guardians_without_account(self) -> list[GuardianProfile]:
        return self.uow.guardian_profiles.find_without_account()

    @operation("get invitable guardians")
    def get_invitable_guardians(self) -> list[GuardianProfile]:
        return self.uow.guardian_profiles.find_invitable()

    # ── Invitations ──────────────────────────────────────────────

    @operation("send invitation")
    def send_invitation(self, guardian_profile_id: int, created_by: int | None) -> GuardianInvitation:
        def _send(uow: UnitOfWork) -> GuardianInvitation:
            profile = uow.guardian_profiles.find_by_id(guardian_profile_id)
            if profile is None:
                raise GuardianNotFoundError()
            if not profile.can_invite():
                raise ValidationFailedError("guardian cannot be invited (missing email or already has an account)")

            for existing in uow.guardian_invitations.find_by_guardian_profile_id(profile.id):
                if existing.is_valid():
                    raise PendingInvitationError()

            # Expired leftovers would collide with the pending-invitation index
            removed = uow.guardian_invitations.delete_expired_for_profile(profile.id)
            if removed:
                logger.info(f"Removed {removed} expired invitation(s) for guardian {profile.id}")

            invitation = GuardianInvitation(
                token=generate_token(),
                guardian_profile_id=profile.id,
                created_by=created_by,
                expires_at=datetime.now(timezone.utc) + self.invitation_expiry,
                email_retry_count=0,
            )
            try:
                uow.guardian_invitations.create(invitation)
            except IntegrityError as exc:
                raise PendingInvitationError() from exc

            logger.info(f"Created invitation {invitation.id} for guardian {profile.id}")
            recipient = InvitationRecipient(
                guardian_profile_id=profile.id,
                first_name=profile.first_name,
                last_name=profile.last_name,
                email=profile.email,
            )
            metadata = DeliveryMetadata(
                type=INVITATION_DELIVERY_TYPE,
                reference_id=invitation.id,
                token=invitation.token,
                recipient=profile.email,
            )
            uow.on_commit(lambda: self._notify(recipient, metadata))
            return invitation

        return self.uow.run(_send)

    def _notify(self, recipient: InvitationRecipient, metadata: DeliveryMetadata) -> None:
        """Build the invitation email after commit and hand it to the dispatcher."""
        db = self.session_factory()
        try:
            student_names = self._get_student_names(UnitOfWork(db), recipient.guardian_profile_id)
        except Exception as exc:
            logger.warning(
                f"Could not resolve students for guardian {recipient.guardian_profile_id}, "
                f"sending without names: {exc}"
            )
            student_names = []
        finally:
            db.close()

        message = self._build_invitation_message(recipient, metadata.token, student_names)
        self._dispatch(message, metadata)

    def _build_invitation_message(
        self, recipient: InvitationRecipient, token: str, student_names: list[str]
    ) -> EmailMessage:
        invitation_url = f"{self.frontend_url}/guardian/invite?token={token}"
        expiry_hours = int(self.invitation_expiry.total_seconds() // 3600)
        context = {
            "first_name": recipient.first_name,
            "last_name": recipient.last_name,
            "invitation_url": invitation_url,
            "expiry_hours": expiry_hours,
            "logo_url": f"{self.frontend_url}/logo.png",
            "student_names": student_names,
        }

        template = load_template("guardian_invitation.html")
        if template:
            students_html = "".join(f"<li>{html.escape(name)}</li>" for name in student_names)
            content = render(
                template,
                first_name=html.escape(recipient.first_name),
                last_name=html.escape(recipient.last_name),
                invitation_url=invitation_url,
                expiry_hours=expiry_hours,
                logo_url=context["logo_url"],
                student_names=students_html,
            )
        else:
            content = (
                f'<p>Hallo {html.escape(recipient.first_name)}, bitte <a href="{invitation_url}">'
                f"aktivieren Sie Ihr Konto</a>. Der Link ist {expiry_hours} Stunden gültig.</p>"
            )

        return EmailMessage(
            to_email=recipient.email,
            subject=INVITATION_EMAIL_SUBJECT,
            html_content=content,
            context=context,
        )

    def _dispatch(self, message: EmailMessage, metadata: DeliveryMetadata) -> None:
        if self.dispatcher is None:
            logger.warning(f"No notification dispatcher configured, invitation {metadata.reference_id} not emailed")
            return
        self.dispatcher.dispatch(
            DeliveryRequest(message=message, metadata=metadata, callback=self._record_delivery)
        )

    def _record_delivery(self, result: DeliveryResult) -> None:
        """Write the delivery outcome onto the invitation in its own session."""
        if result.status == DeliveryStatus.SENT:
            sent_at, error, retry_count = datetime.now(timezone.utc), None, max(result.attempt - 1, 0)
        else:
            sent_at, error, retry_count = None, result.error, result.attempt

        db = self.session_factory()
        try:
            found = GuardianInvitationRepository(db).update_email_status(
                result.metadata.reference_id, sent_at, error, retry_count
            )
            db.commit()
            if not found:
                logger.warning(f"Invitation {result.metadata.reference_id} disappeared before delivery status update")
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to record delivery status for invitation {result.metadata.reference_id}: {e}")
        finally:
            db.close()

    @staticmethod
    def _get_student_names(uow: UnitOfWork, guardian_profile_id: int) -> list[str]:
        names = []
        for rel in uow.student_guardians.find_by_guardian_profile_id(guardian_profile_id):
            student = uow.students.find_by_id(rel.student_id)
            if student is None:
                raise StudentNotFoundError(f"student {rel.student_id} not found")
            person = uow.persons.find_by_id(student.person_id)
            if person is None:
                raise PersonNotFoundError(f"person for student {student.id} not found")
            names.append(person.full_name)
        return names

    @staticmethod
    def _check_invitation_status(invitation: GuardianInvitation) -> None:
        if invitation.is_valid():
            return
        if invitation.is_accepted():
            raise AlreadyAcceptedError()
        if invitation.is_expired():
            raise ExpiredError("invitation has expired")
        raise InvitationInvalidError()

    @operation("validate invitation")
    def validate_invitation(self, token: str) -> InvitationValidationResponse:
        invitation = self.uow.guardian_invitations.find_by_token(token)
        if invitation is None:
            raise InvitationNotFoundError()
        self._check_invitation_status(invitation)

        profile = self.uow.guardian_profiles.find_by_id(invitation.guardian_profile_id)
        if profile is None:
            raise GuardianNotFoundError()

        return InvitationValidationResponse(
            guardian_first_name=profile.first_name,
            guardian_last_name=profile.last_name,
            email=profile.email or "",
            student_names=self._get_student_names(self.uow, profile.id),
            expires_at=invitation.expires_at,
        )

    @operation("accept invitation")
    def accept_invitation(self, token: str, password: str, confirm_password: str) -> AccountParent:
        if password != confirm_password:
            raise ValidationFailedError("passwords do not match")
        strength_error = validate_password_strength(password)
        if strength_error:
            raise ValidationFailedError(strength_error)
        password_hash = get_password_hash(password)

        def _accept(uow: UnitOfWork) -> AccountParent:
            invitation = uow.guardian_invitations.find_by_token(token)
            if invitation is None:
                raise InvitationNotFoundError()
            self._check_invitation_status(invitation)

            profile = uow.guardian_profiles.find_by_id(invitation.guardian_profile_id)
            if profile is None:
                raise GuardianNotFoundError()
            if not profile.email:
                raise ValidationFailedError("guardian profile has no email")
            if profile.has_account:
                raise AlreadyExistsError("guardian already has an account")
            if uow.parent_accounts.find_by_email(profile.email) is not None:
                raise AlreadyExistsError("an account with this email already exists")

            account = uow.parent_accounts.create(
                AccountParent(email=profile.email.strip(), password_hash=password_hash, active=True)
            )
            uow.guardian_profiles.link_account(profile, account.id)
            uow.guardian_invitations.mark_as_accepted(invitation)
            logger.info(f"Invitation {invitation.id} accepted, parent account {account.id} created")
            return account

        return self.uow.run(_accept)

    @operation("get pending invitations")
    def get_pending_invitations(self) -> list[GuardianInvitation]:
        return self.uow.guardian_invitations.find_pending()

    @operation("cleanup expired invitations")
    def cleanup_expired_invitations(self) -> int:
        deleted = self.uow.run(lambda uow: uow.guardian_invitations.delete_expired())
        if deleted:
            logger.info(f"Deleted {deleted} expired guardian invitation(s)")
        return deleted

    # ── Student relationships ────────────────────────────────────

    @operation("link guardian to student")
    def link_guardian_to_student(self, guardian_profile_id: int, data: StudentGuardianCreate) -> StudentGuardian:
        relationship_type = _relationship_type(data.relationship_type)

        def _link(uow: UnitOfWork) -> StudentGuardian:
            if uow.guardian_profiles.find_by_id(guardian_profile_id) is None:
                raise GuardianNotFoundError()
            if uow.students.find_by_id(data.student_id) is None:
                raise StudentNotFoundError()
            if uow.student_guardians.find_pair(data.student_id, guardian_profile_id) is not None:
                raise AlreadyExistsError("guardian is already linked to this student")

            return uow.student_guardians.create(StudentGuardian(
                student_id=data.student_id,
                guardian_profile_id=guardian_profile_id,
                relationship_type=relationship_type,
                is_primary=data.is_primary,
                is_emergency_contact=data.is_emergency_contact,
                can_pickup=data.can_pickup,
                pickup_notes=data.pickup_notes,
                emergency_priority=data.emergency_priority,
            ))

        return self.uow.run(_link)

    @operation("get student guardians")
    def get_student_guardians(self, student_id: int) -> list[GuardianWithRelationship]:
        result = []
        for rel in self.uow.student_guardians.find_by_student_id(student_id):
            profile = self.uow.guardian_profiles.find_by_id(rel.guardian_profile_id)
            if profile is None:
                continue
            result.append(GuardianWithRelationship(profile=profile, relationship=rel))
        return result

    @operation("get guardian students")
    def get_guardian_students(self, guardian_profile_id: int) -> list[StudentWithRelationship]:
        result = []
        for rel in self.uow.student_guardians.find_by_guardian_profile_id(guardian_profile_id):
            student = self.uow.students.find_by_id(rel.student_id)
            if student is None:
                continue
            result.append(StudentWithRelationship(student=student, relationship=rel))
        return result

    @operation("get student guardian relationship")
    def get_student_guardian_relationship(self, relationship_id: int) -> StudentGuardian:
        rel = self.uow.student_guardians.find_by_id(relationship_id)
        if rel is None:
            raise RelationshipNotFoundError()
        return rel

    @operation("update student guardian relationship")
    def update_student_guardian_relationship(self, relationship_id: int, data: StudentGuardianUpdate) -> StudentGuardian:
        def _update(uow: UnitOfWork) -> StudentGuardian:
            rel = uow.student_guardians.find_by_id(relationship_id)
            if rel is None:
                raise RelationshipNotFoundError()

            if data.relationship_type is not None:
                rel.relationship_type = _relationship_type(data.relationship_type)
            for field in ("is_primary", "is_emergency_contact", "can_pickup", "pickup_notes", "emergency_priority"):
                value = getattr(data, field)
                if value is not None:
                    setattr(rel, field, value)
            return uow.student_guardians.update(rel)

        return self.uow.run(_update)

    @operation("remove guardian from student")
    def remove_guardian_from_student(self, student_id: int, guardian_profile_id: int) -> None:
        def _remove(uow: UnitOfWork) -> None:
            rel = uow.student_guardians.find_pair(student_id, guardian_profile_id)
            if rel is None:
                raise RelationshipNotFoundError()
            uow.student_guardians.delete(rel)

        self.uow.run(_remove)

    # ── Phone numbers ────────────────────────────────────────────

    @operation("add phone number")
    def add_phone_number(self, guardian_id: int, data: PhoneNumberCreate) -> GuardianPhoneNumber:
        """Add a number; the first number of a guardian is always primary."""

        def _add(uow: UnitOfWork) -> GuardianPhoneNumber:
            if uow.guardian_profiles.find_by_id(guardian_id) is None:
                raise GuardianNotFoundError()

            repo = uow.guardian_phone_numbers
            count = repo.count_by_guardian_id(guardian_id)
            is_primary = data.is_primary or count == 0
            if is_primary and count > 0:
                repo.unset_all_primary(guardian_id)

            return repo.create(GuardianPhoneNumber(
                guardian_profile_id=guardian_id,
                phone_number=data.phone_number.strip(),
                phone_type=_phone_type(data.phone_type) or PhoneType.MOBILE,
                label=data.label,
                is_primary=is_primary,
                priority=repo.get_next_priority(guardian_id),
            ))

        return self.uow.run(_add)

    @operation("update phone number")
    def update_phone_number(self, phone_id: int, data: PhoneNumberUpdate) -> GuardianPhoneNumber:
        def _update(uow: UnitOfWork) -> GuardianPhoneNumber:
            repo = uow.guardian_phone_numbers
            phone = repo.find_by_id(phone_id)
            if phone is None:
                raise PhoneNumberNotFoundError()

            if data.phone_number is not None:
                phone.phone_number = data.phone_number.strip()
            if data.phone_type is not None:
                phone_type = _phone_type(data.phone_type)
                if phone_type is not None:
                    phone.phone_type = phone_type
            if data.label is not None:
                phone.label = data.label
            if data.priority is not None:
                phone.priority = data.priority

            if data.is_primary and not phone.is_primary:
                repo.set_primary(phone)
            elif data.is_primary is False and phone.is_primary:
                phone.is_primary = False
            return repo.update(phone)

        return self.uow.run(_update)

    @operation("delete phone number")
    def delete_phone_number(self, phone_id: int) -> None:
        def _delete(uow: UnitOfWork) -> None:
            repo = uow.guardian_phone_numbers
            phone = repo.find_by_id(phone_id)
            if phone is None:
                raise PhoneNumberNotFoundError()

            was_primary, guardian_id = phone.is_primary, phone.guardian_profile_id
            repo.delete(phone)

            if was_primary:
                remaining = repo.find_by_guardian_id(guardian_id)
                if remaining:
                    repo.set_primary(remaining[0])

        self.uow.run(_delete)

    @operation("set primary phone")
    def set_primary_phone(self, phone_id: int) -> GuardianPhoneNumber:
        def _set(uow: UnitOfWork) -> GuardianPhoneNumber:
            phone = uow.guardian_phone_numbers.find_by_id(phone_id)
            if phone is None:
                raise PhoneNumberNotFoundError()
            uow.guardian_phone_numbers.set_primary(phone)
            return phone

        return self.uow.run(_set)

    @operation("get guardian phone numbers")
    def get_guardian_phone_numbers(self, guardian_id: int) -> list[GuardianPhoneNumber]:
        if self.uow.guardian_profiles.find_by_id(guardian_id) is None:
            raise GuardianNotFoundError()
        return self.uow.guardian_phone_numbers.find_by_guardian_id(guardian_id)
