import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from ..models.storage_entry import StorageEntry

logger = logging.getLogger(__name__)


class LocalStorage:
    """Синхронное key/value хранилище устройства"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_item(self, key: str) -> Optional[str]:
        db = self.session_factory()
        try:
            entry = db.query(StorageEntry).filter(StorageEntry.key == key).first()
            return entry.value if entry else None
        finally:
            db.close()

    def set_item(self, key: str, value: str) -> None:
        db = self.session_factory()
        try:
            entry = db.query(StorageEntry).filter(StorageEntry.key == key).first()
            if entry:
                entry.value = value
            else:
                db.add(StorageEntry(key=key, value=value))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to write local storage key {key}: {e}")
            raise
        finally:
            db.close()

    def remove_item(self, key: str) -> None:
        db = self.session_factory()
        try:
            db.query(StorageEntry).filter(StorageEntry.key == key).delete()
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to remove local storage key {key}: {e}")
            raise
        finally:
            db.close()
