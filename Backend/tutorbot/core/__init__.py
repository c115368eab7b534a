"""
Core module - configuration, database and response formatting.
"""
from .config import get_settings
from .db import get_session, init_models, Base, engine, AsyncSessionLocal
from .responses import (
    ErrorCodes,
    success_response,
    error_response,
)

__all__ = [
    # Config
    "get_settings",
    # Database
    "get_session",
    "init_models",
    "Base",
    "engine",
    "AsyncSessionLocal",
    # Responses
    "ErrorCodes",
    "success_response",
    "error_response",
]
