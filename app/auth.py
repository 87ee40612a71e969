"""
Token issuing/verification and the login/register flows.

The signing secret is handed to AuthService when it is built; routes get
an instance through the get_auth_service dependency and the caller's
identity through get_principal.
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app import storage
from app.config import Settings, get_settings
from app.errors import DuplicateIdentity, InvalidCredentials, InvalidToken
from app.metrics import record_auth_outcome

logger = logging.getLogger(__name__)

# auto_error=False so a missing header is reported as an invalid token (401)
security = HTTPBearer(auto_error=False)


class AuthService:
    """Issues and verifies bearer tokens and drives login/register."""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        if not secret_key:
            raise ValueError("secret_key must be non-empty")
        self._secret_key = secret_key
        self._algorithm = algorithm

    def issue_token(self, username: str) -> str:
        # No exp claim: tokens stay valid until the secret is rotated
        return jwt.encode({"username": username}, self._secret_key, algorithm=self._algorithm)

    def verify_token(self, token: str) -> str:
        """Return the username bound to token, or raise InvalidToken."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.PyJWTError as e:
            logger.info(f"Token rejected: {e}")
            raise InvalidToken("Invalid token")

        username = payload.get("username")
        if not isinstance(username, str) or not username:
            logger.info("Token rejected: no username claim")
            raise InvalidToken("Invalid token")
        return username

    def login(self, db: Session, username: str, password: str) -> str:
        """
        Check credentials, then issue a token and record the login.

        Unknown users and wrong passwords fail the same way.
        """
        try:
            valid = storage.authenticate(db, username, password)
        except InvalidCredentials:
            record_auth_outcome("login", "invalid_credentials")
            raise

        if not valid:
            record_auth_outcome("login", "invalid_credentials")
            raise InvalidCredentials("Invalid username/password")

        token = self.issue_token(username)
        storage.update_login_timestamp(db, username)
        record_auth_outcome("login", "success")
        logger.info(f"User logged in: {username}")
        return token

    def register(
        self,
        db: Session,
        username: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str,
    ) -> str:
        """Create the user, issue a token and record the login, in that order."""
        try:
            user = storage.register(
                db,
                username=username,
                password=password,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
            )
        except DuplicateIdentity:
            record_auth_outcome("register", "duplicate")
            raise

        token = self.issue_token(user["username"])
        storage.update_login_timestamp(db, user["username"])
        record_auth_outcome("register", "success")
        return token


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def get_auth_service(settings: Settings = Depends(get_settings)) -> AuthService:
    return AuthService(settings.SECRET_KEY, settings.JWT_ALGORITHM)


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth: AuthService = Depends(get_auth_service),
) -> str:
    """Resolve the authenticated username for the current request."""
    if credentials is None:
        raise InvalidToken("Missing bearer token")
    return auth.verify_token(credentials.credentials)
