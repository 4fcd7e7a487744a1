import enum

from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, DateTime, Enum, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from identity.db.database import Base


class RelationshipType(str, enum.Enum):
    PARENT = "parent"
    MOTHER = "mother"
    FATHER = "father"
    GUARDIAN = "guardian"
    GRANDPARENT = "grandparent"
    OTHER = "other"


class PhoneType(str, enum.Enum):
    MOBILE = "mobile"
    HOME = "home"
    WORK = "work"
    OTHER = "other"


class GuardianProfile(Base):
    """Guardian data, independent of whether the guardian has portal access.

    ``has_account`` flips from False to True exactly once, when an invitation
    is accepted.
    """

    __tablename__ = "guardian_profiles"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), index=True, nullable=True)
    phone = Column(String(50), nullable=True)
    mobile_phone = Column(String(50), nullable=True)
    address_street = Column(String(255), nullable=True)
    address_city = Column(String(100), nullable=True)
    address_postal_code = Column(String(20), nullable=True)
    preferred_contact_method = Column(String(20), nullable=False, default="phone")
    language_preference = Column(String(10), nullable=False, default="de")
    occupation = Column(String(100), nullable=True)
    employer = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    has_account = Column(Boolean, nullable=False, default=False)
    account_id = Column(Integer, ForeignKey("accounts_parents.id", ondelete="SET NULL"), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    account = relationship("AccountParent", foreign_keys=[account_id])
    phone_numbers = relationship(
        "GuardianPhoneNumber",
        order_by="GuardianPhoneNumber.priority",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def can_invite(self) -> bool:
        """A guardian can be invited when an email is on file and no account exists yet."""
        return bool(self.email and self.email.strip()) and not self.has_account


class GuardianPhoneNumber(Base):
    __tablename__ = "guardian_phone_numbers"

    id = Column(Integer, primary_key=True, index=True)
    guardian_profile_id = Column(
        Integer, ForeignKey("guardian_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    phone_number = Column(String(50), nullable=False)
    phone_type = Column(Enum(PhoneType), nullable=False, default=PhoneType.MOBILE)
    label = Column(String(100), nullable=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    priority = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class StudentGuardian(Base):
    __tablename__ = "students_guardians"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    guardian_profile_id = Column(Integer, ForeignKey("guardian_profiles.id", ondelete="CASCADE"), nullable=False)
    relationship_type = Column(Enum(RelationshipType), nullable=False, default=RelationshipType.PARENT)
    is_primary = Column(Boolean, nullable=False, default=False)
    is_emergency_contact = Column(Boolean, nullable=False, default=False)
    can_pickup = Column(Boolean, nullable=False, default=True)
    pickup_notes = Column(Text, nullable=True)
    emergency_priority = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    student = relationship("Student", foreign_keys=[student_id])
    guardian_profile = relationship("GuardianProfile", foreign_keys=[guardian_profile_id])

    __table_args__ = (
        UniqueConstraint("student_id", "guardian_profile_id", name="uq_students_guardians_pair"),
        Index("ix_students_guardians_guardian", "guardian_profile_id"),
    )
