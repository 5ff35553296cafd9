"""Relational persistence for the key/value storage collaborator."""

from logibrew.db.engine import Base, create_engine, get_engine, get_session_factory, init_db, close_db

__all__ = [
    "Base",
    "create_engine",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
]
