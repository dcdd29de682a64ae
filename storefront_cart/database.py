from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings

Base = declarative_base()


def create_storage_engine(url: str = None, echo: bool = None):
    """Создает движок локального хранилища устройства"""
    url = url or settings.local_storage_url
    kwargs = {"echo": settings.debug if echo is None else echo}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory база должна жить в одном соединении
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool

    return create_engine(url, **kwargs)


def create_session_factory(engine):
    """Создает фабрику сессий и таблицы хранилища"""
    from .models import StorageEntry  # noqa: F401 регистрирует таблицу

    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
