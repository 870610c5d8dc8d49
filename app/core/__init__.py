from .config import GatewayConfigError, settings
from .database import database_ok, get_db, init_db, session_factory

__all__ = ["GatewayConfigError", "settings", "database_ok", "get_db", "init_db", "session_factory"]
