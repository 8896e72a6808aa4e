# streamline/storage/db.py
from sqlmodel import SQLModel, create_engine, Session

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.event_record  # noqa: F401
import models.calendar_record  # noqa: F401
from storage import migrations


_engine = create_engine(f"sqlite:///{DB_PATH.as_posix()}", echo=False)


def init_db(engine=None):
    engine = engine or _engine
    if engine is _engine:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(engine)
    migrations.run_all(engine)


def get_engine():
    return _engine


def get_session() -> Session:
    return Session(_engine)
