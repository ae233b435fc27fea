# schooldesk/storage/db.py
from sqlmodel import SQLModel, create_engine, Session

from core.settings import DB_PATH, BACKUP
from storage.backup import ensure_daily_backup

# Ensure SQLModel metadata is populated
import models.local_record  # noqa: F401
import models.sync_queue_item  # noqa: F401
from storage import migrations


_engine = create_engine(f"sqlite:///{DB_PATH.as_posix()}", echo=False)


def init_db(engine=None):
    target = engine or _engine
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(target)
    migrations.run_all(target)
    if BACKUP.enabled and engine is None:
        ensure_daily_backup(DB_PATH, BACKUP.directory, keep_days=BACKUP.keep_days)


def get_engine():
    return _engine


def get_session() -> Session:
    return Session(_engine)
