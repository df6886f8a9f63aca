from collections.abc import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from fitsync.core.config import Settings, get_settings
from fitsync.db.session import init_engine, session_scope


def get_db_session(settings: Settings = Depends(get_settings)) -> Iterator[Session]:
    session_factory = init_engine(settings)
    with session_scope(session_factory) as session:
        yield session


def get_session_factory(settings: Settings = Depends(get_settings)) -> sessionmaker[Session]:
    return init_engine(settings)
