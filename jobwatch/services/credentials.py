"""
Credential providers.

Gate submission on a valid identity and supply the owner stamped on
each job.
"""
from datetime import datetime, timedelta, timezone
from typing import Protocol

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from jobwatch.config import settings
from jobwatch.logging_config import get_logger

logger = get_logger(component="credentials")


class Identity(BaseModel):
    """Authenticated user."""
    uid: str
    email: str | None = None
    role: str | None = None


class CredentialProvider(Protocol):
    def current_identity(self) -> Identity | None: ...


class StaticCredentialProvider:
    """Provider returning a fixed identity (or none)."""

    def __init__(self, identity: Identity | None = None):
        self.identity = identity

    def current_identity(self) -> Identity | None:
        return self.identity


class TokenCredentialProvider:
    """
    Provider backed by a bearer token.

    The token is re-verified on every call, so an expired token yields
    None the moment it expires.
    """

    def __init__(
        self,
        token: str | None = None,
        secret_key: str | None = None,
        algorithm: str | None = None,
    ):
        self.token = token
        self.secret_key = secret_key or settings.JWT_SECRET_KEY
        self.algorithm = algorithm or settings.JWT_ALGORITHM

    def set_token(self, token: str | None) -> None:
        self.token = token

    def create_token(self, uid: str, email: str | None = None, role: str = "user",
                     expires_in: timedelta = timedelta(hours=1)) -> str:
        """Create a signed token for uid."""
        payload = {
            "sub": uid,
            "email": email,
            "role": role,
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def current_identity(self) -> Identity | None:
        if not self.token:
            return None
        try:
            payload = jwt.decode(self.token, self.secret_key, algorithms=[self.algorithm])
            return Identity(uid=payload["sub"], email=payload.get("email"), role=payload.get("role"))
        except (JWTError, KeyError, ValidationError) as e:
            logger.info("credential_rejected", error=str(e))
            return None
