from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from identity.db.database import Base


class Person(Base):
    """Core identity row, distinct from any login credential.

    ``account_id`` and ``tag_id`` are unique so that an account or a tag can
    belong to at most one person, and a person holds at most one of each.
    """

    __tablename__ = "persons"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), unique=True, nullable=True)
    tag_id = Column(String(64), ForeignKey("rfid_cards.id", ondelete="SET NULL"), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    account = relationship("Account", foreign_keys=[account_id])
    rfid_card = relationship("RFIDCard", foreign_keys=[tag_id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
