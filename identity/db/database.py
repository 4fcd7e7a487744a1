from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from identity.core.config import settings

_is_sqlite = settings.database_url.startswith("sqlite")

# Request handlers and notification workers share the engine across threads
if _is_sqlite:
    engine = create_engine(settings.database_url, connect_args={"check_same_thread": False})
else:
    engine = create_engine(settings.database_url, pool_pre_ping=True)

# Link constraints (person to account, person to tag) rely on foreign keys,
# which SQLite leaves off by default
if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db() -> None:
    """Create the identity tables, including the pending-invitation index."""
    import identity.models  # noqa: F401 (registers all tables on Base.metadata)

    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
