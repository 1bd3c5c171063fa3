import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from circulate.configs import DB_URI, DEBUG

logger = logging.getLogger(__name__)
# Only use client_encoding for PostgreSQL, not SQLite
engine_kwargs = {'echo': DEBUG}
if DB_URI.startswith('sqlite'):
    # A single shared connection keeps the in-memory database alive across threads
    engine_kwargs['connect_args'] = {'check_same_thread': False}
    engine_kwargs['poolclass'] = StaticPool
else:
    engine_kwargs['client_encoding'] = 'utf8'
engine = create_engine(DB_URI, **engine_kwargs)
session = scoped_session(sessionmaker(
    bind=engine, autocommit=False, autoflush=False))

class CirculateBase:
    @classmethod
    def get_many(cls, db, offset=None, limit=None):
        return db.query(cls).order_by(cls.id).offset(offset).limit(limit).all()

Base = declarative_base(cls=CirculateBase)

def init(bind=None):
    try:
        # Register every model on Base before creating tables
        from circulate.core import models  # noqa: F401
        Base.metadata.create_all(bind=bind or engine)
        return session
    except Exception as e:
        logger.warning(f"[WARNING] Database initialization failed: {e}")
