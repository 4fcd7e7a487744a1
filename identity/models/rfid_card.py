from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func

from identity.db.database import Base


def normalize_tag_code(tag_code: str) -> str:
    """Printed tag codes are matched case-insensitively and without spaces."""
    return "".join((tag_code or "").split()).upper()


class RFIDCard(Base):
    __tablename__ = "rfid_cards"

    # The printed tag code is the identifier
    id = Column(String(64), primary_key=True)
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
