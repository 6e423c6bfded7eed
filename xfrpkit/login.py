"""Login state of the client and checking of the server's login reply."""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass
from typing import Optional

__all__ = ["PROTOCOL_VERSION", "LoginConfig", "LoginResponse", "new_login"]

logger = logging.getLogger(__name__)

#: Protocol version announced when logging in.
PROTOCOL_VERSION = "0.10.0"


@dataclass
class LoginResponse:
    """The server's reply to a login request."""

    version: Optional[str] = None
    run_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class LoginConfig:
    """What the client announces at login, plus whether it is logged in."""

    version: str = PROTOCOL_VERSION
    hostname: Optional[str] = None
    os: str = ""
    arch: str = ""
    user: Optional[str] = None
    privilege_key: Optional[str] = None
    timestamp: int = 0
    run_id: Optional[str] = None
    metas: Optional[str] = None
    pool_count: int = 1
    logged: bool = False

    def check_response(self, response: LoginResponse) -> bool:
        """Record the outcome of a login reply and return whether it succeeded."""
        if response.run_id is None or len(response.run_id) <= 1:
            if response.error:
                logger.error("login response error: %s", response.error)
            logger.error("login failed!")
            self.logged = False
        else:
            self.logged = True
            logger.debug(
                "login response: run_id: [%s], version: [%s]",
                response.run_id,
                response.version,
            )
            self.run_id = response.run_id
        return self.logged


def new_login(run_id: Optional[str]) -> LoginConfig:
    """A fresh login configuration for this machine with the given run id."""
    info = platform.uname()
    return LoginConfig(
        version=PROTOCOL_VERSION,
        os=info.system,
        arch=info.machine,
        run_id=run_id,
    )