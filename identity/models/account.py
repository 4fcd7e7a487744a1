from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func

from identity.core.config import settings
from identity.core.security import hash_pin, verify_pin
from identity.db.database import Base


class Account(Base):
    """Staff login credential holder, optionally carrying a PIN.

    The PIN attempt counter only goes back to zero through
    ``reset_pin_attempts``; once ``pin_max_attempts`` is reached the account
    stays locked regardless of the PIN presented.
    """

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, nullable=True)
    password_hash = Column(String(255), nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    pin_hash = Column(String(255), nullable=True)
    pin_attempts = Column(Integer, default=0, nullable=False)
    pin_locked_at = Column(DateTime(timezone=True), nullable=True)

    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def has_pin(self) -> bool:
        return bool(self.pin_hash)

    def set_pin(self, pin: str) -> None:
        self.pin_hash = hash_pin(pin)

    def verify_pin(self, pin: str) -> bool:
        return verify_pin(pin, self.pin_hash)

    def is_pin_locked(self) -> bool:
        return self.pin_locked_at is not None or (self.pin_attempts or 0) >= settings.pin_max_attempts

    def increment_pin_attempts(self) -> None:
        self.pin_attempts = (self.pin_attempts or 0) + 1
        if self.pin_attempts >= settings.pin_max_attempts and self.pin_locked_at is None:
            self.pin_locked_at = datetime.now(timezone.utc)

    def reset_pin_attempts(self) -> None:
        self.pin_attempts = 0
        self.pin_locked_at = None


class AccountParent(Base):
    """Guardian portal account, created when an invitation is accepted."""

    __tablename__ = "accounts_parents"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, nullable=True)
    password_hash = Column(String(255), nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
