from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from identity.models.guardian import PhoneType, RelationshipType


class GuardianCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = None
    mobile_phone: str | None = None
    address_street: str | None = None
    address_city: str | None = None
    address_postal_code: str | None = None
    preferred_contact_method: str = ""  # empty = "phone"
    language_preference: str = ""  # empty = "de"
    occupation: str | None = None
    employer: str | None = None
    notes: str | None = None


class GuardianUpdate(GuardianCreate):
    pass


class GuardianResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    mobile_phone: str | None
    address_street: str | None
    address_city: str | None
    address_postal_code: str | None
    preferred_contact_method: str
    language_preference: str
    occupation: str | None
    employer: str | None
    notes: str | None
    has_account: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class InvitationResponse(BaseModel):
    id: int
    guardian_profile_id: int
    created_by: int | None
    expires_at: datetime
    accepted_at: datetime | None
    email_sent_at: datetime | None
    email_error: str | None
    email_retry_count: int
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class GuardianWithInvitationResponse(BaseModel):
    guardian: GuardianResponse
    invitation: InvitationResponse


class InvitationValidationResponse(BaseModel):
    guardian_first_name: str
    guardian_last_name: str
    email: str
    student_names: list[str]
    expires_at: datetime


class InvitationAcceptRequest(BaseModel):
    password: str
    confirm_password: str


class ParentAccountResponse(BaseModel):
    id: int
    email: str
    active: bool

    class Config:
        from_attributes = True


class StudentGuardianCreate(BaseModel):
    student_id: int
    relationship_type: str = "parent"
    is_primary: bool = False
    is_emergency_contact: bool = False
    can_pickup: bool = True
    pickup_notes: str | None = None
    emergency_priority: int = 1


class StudentGuardianUpdate(BaseModel):
    relationship_type: str | None = None
    is_primary: bool | None = None
    is_emergency_contact: bool | None = None
    can_pickup: bool | None = None
    pickup_notes: str | None = None
    emergency_priority: int | None = None


class StudentGuardianResponse(BaseModel):
    id: int
    student_id: int
    guardian_profile_id: int
    relationship_type: RelationshipType
    is_primary: bool
    is_emergency_contact: bool
    can_pickup: bool
    pickup_notes: str | None
    emergency_priority: int

    class Config:
        from_attributes = True


class GuardianStudentResponse(BaseModel):
    student_id: int
    full_name: str
    school_class: str | None
    relationship: StudentGuardianResponse


class PhoneNumberCreate(BaseModel):
    phone_number: str = Field(min_length=1, max_length=50)
    phone_type: str = "mobile"
    label: str | None = None
    is_primary: bool = False


class PhoneNumberUpdate(BaseModel):
    phone_number: str | None = None
    phone_type: str | None = None
    label: str | None = None
    is_primary: bool | None = None
    priority: int | None = None


class PhoneNumberResponse(BaseModel):
    id: int
    guardian_profile_id: int
    phone_number: str
    phone_type: PhoneType
    label: str | None
    is_primary: bool
    priority: int

    class Config:
        from_attributes = True
