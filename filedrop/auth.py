"""User authentication and signed session tokens."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import timedelta

import jwt

_HMAC_ALGORITHMS = ["HS256", "HS384", "HS512"]
_SIGNING_ALGORITHM = "HS256"


@dataclass
class User:
    """An authenticated user."""

    uid: str
    username: str


@dataclass
class AuthenticationResponse:
    """The outcome of an authentication or token operation."""

    success: bool = False
    user: User | None = None
    error: Exception | None = None
    message: str = ""
    jwt_token: str = ""


class AuthProvider(ABC):
    """Checks login credentials and issues and validates session tokens."""

    @abstractmethod
    def authenticate(self, form: Mapping[str, str]) -> AuthenticationResponse:
        """Check the ``username`` and ``password`` fields of a submitted form."""

    @abstractmethod
    def generate_token(self, response: AuthenticationResponse) -> AuthenticationResponse:
        """Return ``response`` carrying a token for its user if it succeeded."""

    @abstractmethod
    def validate_token(self, token: str) -> AuthenticationResponse:
        """Check a token and report the user it was issued to."""


class JWTSigner:
    """Issues and checks HMAC-signed JWTs that carry a ``user`` claim."""

    def __init__(self, secret: str, expiry: timedelta) -> None:
        self.secret = secret
        self.expiry = expiry

    def generate_token(self, response: AuthenticationResponse) -> AuthenticationResponse:
        """Sign a token for a successful response; other responses pass through."""
        if not response.success or response.user is None:
            return response
        now = int(time.time())
        claims = {
            "user": response.user.uid,
            "exp": now + int(self.expiry.total_seconds()),
            "iat": now,
        }
        try:
            signed = jwt.encode(claims, self.secret, algorithm=_SIGNING_ALGORITHM)
        except jwt.PyJWTError as exc:
            return replace(response, error=exc)
        return replace(response, jwt_token=signed, error=None)

    def validate_token(self, token: str) -> AuthenticationResponse:
        """Verify signature and expiry and extract the user claim."""
        try:
            claims = jwt.decode(token, self.secret, algorithms=_HMAC_ALGORITHMS)
        except jwt.PyJWTError as exc:
            return AuthenticationResponse(success=False, error=exc)
        user = claims.get("user")
        if not isinstance(user, str):
            return AuthenticationResponse(success=False, message="JWT does not contain user claim")
        return AuthenticationResponse(
            success=True,
            user=User(uid=user, username=user),
            jwt_token=token,
            message="JWT is OK",
        )


class DevProvider(JWTSigner, AuthProvider):
    """Accepts a single fixed username and password; meant for development."""

    def __init__(self, username: str, password: str, secret: str, expiry: timedelta) -> None:
        super().__init__(secret, expiry)
        self.username = username
        self.password = password

    def authenticate(self, form: Mapping[str, str]) -> AuthenticationResponse:
        username = form.get("username") or ""
        password = form.get("password") or ""
        if not username or not password:
            return AuthenticationResponse(
                success=False,
                error=ValueError("Username and Password are empty"),
                message="Username and Password are empty",
            )
        user = User(uid=username, username=username)
        if username == self.username and password == self.password:
            return AuthenticationResponse(success=True, user=user, message="Dev login successful")
        return AuthenticationResponse(success=False, user=user, message="Dev login failed")