import logging

from sqlalchemy.orm import Session

from identity.core.exceptions import IdentityError
from identity.db.database import SessionLocal
from identity.db.unit_of_work import UnitOfWork
from identity.services.guardian_service import GuardianService

logger = logging.getLogger(__name__)


async def cleanup_expired_invitations():
    """Delete guardian invitations that expired without being accepted.

    Runs on an interval. Expired tokens are already rejected when presented;
    this only keeps the table small.
    """
    logger.info("Running expired invitation cleanup...")

    db: Session = SessionLocal()
    try:
        deleted = GuardianService(UnitOfWork(db)).cleanup_expired_invitations()
        logger.info(f"Expired invitation cleanup complete | deleted={deleted}")
    except IdentityError as e:
        logger.error(f"Expired invitation cleanup failed | error={e}", exc_info=True)
    finally:
        db.close()
