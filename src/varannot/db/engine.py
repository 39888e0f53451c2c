"""Database engine factory and session management."""

from sqlalchemy import create_engine as _create_engine
from sqlalchemy.orm import sessionmaker

from varannot.config import config

_engine = None
_session_factory = None


def get_engine(url: str | None = None):
    """Return the engine for ``url``; the configured one is cached."""
    global _engine
    if url is not None and url != config.database.url:
        return _create_engine(url, echo=config.database.echo)
    if _engine is None:
        _engine = _create_engine(config.database.url, echo=config.database.echo)
    return _engine


def get_session_factory(url: str | None = None):
    global _session_factory
    if url is not None and url != config.database.url:
        return sessionmaker(bind=get_engine(url), expire_on_commit=False)
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory

