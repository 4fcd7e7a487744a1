from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from identity.db.database import Base


def _naive_utc(value: datetime) -> datetime:
    # Compare as naive UTC: SQLite returns naive, PostgreSQL returns aware
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


class GuardianInvitation(Base):
    """Single-use onboarding token scoped to one guardian profile.

    Pending -> Expired is evaluated lazily from ``expires_at``;
    Pending -> Accepted is terminal.
    """

    __tablename__ = "guardian_invitations"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(255), unique=True, nullable=False, index=True)
    guardian_profile_id = Column(
        Integer, ForeignKey("guardian_profiles.id", ondelete="CASCADE"), nullable=False
    )
    created_by = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)

    # Delivery status, written by the notification callback
    email_sent_at = Column(DateTime(timezone=True), nullable=True)
    email_error = Column(Text, nullable=True)
    email_retry_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    guardian_profile = relationship("GuardianProfile", foreign_keys=[guardian_profile_id])

    __table_args__ = (
        # At most one unaccepted invitation per profile
        Index(
            "uq_guardian_invitations_pending",
            "guardian_profile_id",
            unique=True,
            sqlite_where=text("accepted_at IS NULL"),
            postgresql_where=text("accepted_at IS NULL"),
        ),
    )

    def is_accepted(self) -> bool:
        return self.accepted_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return _naive_utc(self.expires_at) < _naive_utc(now)

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.is_accepted() and not self.is_expired(now)
