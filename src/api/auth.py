"""Shared-code login and per-process dashboard sessions."""

import secrets
import time
from typing import Annotated

from fastapi import Header, Request

from src.submission.errors import Unauthorized, ValidationFailed
from src.utils.config import AuthConfig
from src.utils.logger import get_logger

logger = get_logger(__name__)


def new_session_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class SessionAuth:
    """Admin-code check with one session id per server process.

    The id is regenerated on every start, so a restart logs every
    dashboard out.
    """

    def __init__(self, config: AuthConfig | None = None) -> None:
        self.config = config or AuthConfig()
        self.session_id = new_session_id()

    def login(self, code: str | None) -> str:
        if not code:
            raise ValidationFailed("Code is required")
        expected = self.config.admin_code
        if not expected or not secrets.compare_digest(code.encode(), expected.encode()):
            logger.warning("Rejected login attempt")
            raise Unauthorized()
        logger.info("Dashboard login accepted")
        return self.session_id

    def check(self, session_id: str | None) -> None:
        if not self.config.require_session:
            return
        if not session_id or not secrets.compare_digest(
            session_id.encode(), self.session_id.encode()
        ):
            raise Unauthorized("Session expired or invalid")


def require_session(
    request: Request,
    x_session_id: Annotated[str | None, Header()] = None,
) -> None:
    """FastAPI dependency guarding dashboard routes."""
    request.app.state.auth.check(x_session_id)
