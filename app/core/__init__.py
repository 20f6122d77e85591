"""Core configuration, database sessions and security helpers."""

from app.core.config import Settings, get_settings, settings
from app.core.database import SessionLocal, get_db
from app.core.security import normalize_email

__all__ = ["Settings", "SessionLocal", "get_db", "get_settings", "normalize_email", "settings"]
