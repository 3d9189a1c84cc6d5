from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .models import Base


def create_session_factory(database_url: str, create_tables: bool = True):
    engine = create_engine(database_url, pool_pre_ping=True)
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False,
                        autoflush=False,
                        expire_on_commit=False,
                        bind=engine)
