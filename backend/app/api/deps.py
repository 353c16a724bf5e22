"""FastAPI dependencies for the API layer."""

from starlette.requests import HTTPConnection

from app.config import Settings
from starlight.realtime import SessionManager


def get_session_manager(connection: HTTPConnection) -> SessionManager:
    """Return the process-wide session manager created by :func:`app.main.create_app`."""

    return connection.app.state.session_manager


def get_app_settings(connection: HTTPConnection) -> Settings:
    return connection.app.state.settings
