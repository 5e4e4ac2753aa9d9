"""
Database package for GitConnect
"""

from .database import build_engine, build_session_factory, get_db, init_db
from .user_store import TokenCipher, TokenDecryptionError, UserStore

__all__ = [
    "build_engine",
    "build_session_factory",
    "get_db",
    "init_db",
    "TokenCipher",
    "TokenDecryptionError",
    "UserStore",
]
