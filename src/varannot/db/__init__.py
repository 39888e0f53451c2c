from varannot.db.engine import get_engine, get_session_factory
from varannot.db.models import Base, Variant

__all__ = [
    "get_engine",
    "get_session_factory",
    "Base",
    "Variant",
]
