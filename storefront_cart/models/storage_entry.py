from sqlalchemy import Column, String, Text, DateTime, func
from ..database import Base


class StorageEntry(Base):
    __tablename__ = "local_storage"

    key = Column(String, primary_key=True, index=True)
    value = Column(Text, nullable=False)  # JSON снимок
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
