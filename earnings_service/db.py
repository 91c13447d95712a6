from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from common.settings import settings

_engine = None
_SessionLocal = None

def get_engine():
    global _engine
    if _engine is None:
        _engine = create_engine(settings.sqlalchemy_url, pool_pre_ping=True, isolation_level="READ COMMITTED")
    return _engine

def get_session_factory() -> sessionmaker:
    """Session factory bound to the configured database, built on first use."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionLocal

def init_db():
    from earnings_service.models import Base
    Base.metadata.create_all(bind=get_engine())
