from identity.schemas.guardian import GuardianCreate, GuardianUpdate, GuardianResponse, InvitationResponse
from identity.schemas.person import LinkAccountRequest, LinkRFIDRequest, PersonProfileResponse, StaffResponse

__all__ = [
    "GuardianCreate", "GuardianUpdate", "GuardianResponse", "InvitationResponse",
    "LinkAccountRequest", "LinkRFIDRequest", "PersonProfileResponse", "StaffResponse",
]
