from datetime import datetime

from pydantic import BaseModel, Field


class LinkAccountRequest(BaseModel):
    account_id: int


class LinkRFIDRequest(BaseModel):
    tag_id: str = Field(min_length=1, max_length=64)


class RFIDCardResponse(BaseModel):
    id: str
    active: bool

    class Config:
        from_attributes = True


class AccountSummary(BaseModel):
    id: int
    email: str
    active: bool
    has_pin: bool
    pin_attempts: int
    pin_locked_at: datetime | None


class PersonProfileResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    account: AccountSummary | None = None
    rfid_card: RFIDCardResponse | None = None


class PINValidateRequest(BaseModel):
    pin: str


class SetPINRequest(BaseModel):
    pin: str


class StaffResponse(BaseModel):
    id: int
    person_id: int
    first_name: str
    last_name: str
    position: str | None
