from identity.models.person import Person
from identity.models.rfid_card import RFIDCard
from identity.models.account import Account, AccountParent
from identity.models.staff import Staff
from identity.models.student import Student
from identity.models.guardian import (
    GuardianProfile,
    GuardianPhoneNumber,
    StudentGuardian,
    RelationshipType,
    PhoneType,
)
from identity.models.invitation import GuardianInvitation

__all__ = [
    "Person",
    "RFIDCard",
    "Account",
    "AccountParent",
    "Staff",
    "Student",
    "GuardianProfile",
    "GuardianPhoneNumber",
    "StudentGuardian",
    "RelationshipType",
    "PhoneType",
    "GuardianInvitation",
]
