from __future__ import annotations

import logging
from pathlib import Path

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

logger = logging.getLogger(__name__)

_basic = HTTPBasic(auto_error=False)


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    # htpasswd tools (and PHP) write $2y$ hashes; bcrypt only knows the $2b$ spelling.
    if hashed_password.startswith("$2y$"):
        hashed_password = "$2b$" + hashed_password[4:]
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


class HtpasswdAuth:
    """Checks credentials against ``user:hash`` lines of an htpasswd file.

    The file is re-read on every check so accounts can be edited without a restart.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load_users(self) -> dict[str, str]:
        users: dict[str, str] = {}
        if not self.path.is_file():
            return users
        for line in self.path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            username, sep, hashed = line.partition(":")
            if not sep or not username or not hashed:
                continue
            users.setdefault(username, hashed)
        return users

    def authenticate(self, username: str, password: str) -> bool:
        hashed = self.load_users().get(username)
        if hashed is None:
            return False
        return verify_password(password, hashed)


def current_user(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> str | None:
    """The logged-in username, or None for anonymous requests."""
    if credentials is None:
        return None
    auth: HtpasswdAuth = request.app.state.auth
    if auth.authenticate(credentials.username, credentials.password):
        return credentials.username
    logger.warning("Failed login for user %s", credentials.username)
    return None


def require_user(user: str | None = Depends(current_user)) -> str:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Login required",
            headers={"WWW-Authenticate": "Basic"},
        )
    return user
