from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from lms_telemetry.core.config import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith('sqlite'):
        # FastAPI runs the sync endpoints in a threadpool
        return {'connect_args': {'check_same_thread': False}}
    return {'pool_pre_ping': True, 'pool_size': 10, 'max_overflow': 20}


engine = create_engine(
    settings.database_url,
    echo=settings.db_echo,
    future=True,
    **_engine_kwargs(settings.database_url),
)


if engine.dialect.name == 'sqlite':
    @event.listens_for(engine, 'connect')
    def _sqlite_pragmas(dbapi_connection, connection_record):
        # ingest batches and operator reads overlap; let readers proceed during writes
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA journal_mode=WAL')
        cursor.execute('PRAGMA busy_timeout=5000')
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    """Request-scoped session; the dependency tests override."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
