"""Request authentication and the per-request user context."""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any, Callable

from werkzeug.wrappers import Request

from filedrop.auth import AuthProvider
from filedrop.database import Database
from filedrop.logger import MIDDLEWARE, Logger

COOKIE_NAME = "auth-token"
CONTEXT_KEY = "filedrop.context"

_TERMINAL_AGENTS = ("curl", "wget", "HTTPie", "fetch", "Go-http-client")


def is_terminal(user_agent: str) -> bool:
    """Tell whether a User-Agent belongs to a command-line client."""
    return any(agent in user_agent for agent in _TERMINAL_AGENTS)


@dataclass
class RequestContext:
    """What the authentication layer learned about a request."""

    username: str = ""
    is_terminal: bool = False
    space: int = 0


def _context(request: Request) -> RequestContext:
    ctx = request.environ.get(CONTEXT_KEY)
    return ctx if isinstance(ctx, RequestContext) else RequestContext()


def get_username(request: Request) -> str:
    """Return the authenticated username, or an empty string."""
    return _context(request).username


def get_is_terminal(request: Request) -> bool:
    """Return whether the request came from a command-line client."""
    return _context(request).is_terminal


def get_user_used_space(request: Request) -> int:
    """Return the space the user's files take up."""
    return _context(request).space


class Middleware:
    """Resolves the user behind a request from its cookie or bearer token."""

    def __init__(self, auth_provider: AuthProvider, database: Database, logger: Logger) -> None:
        self.auth_provider = auth_provider
        self.database = database
        self.logger = logger

    def _cookie_user(self, request: Request) -> str:
        value = request.cookies.get(COOKIE_NAME)
        if value is None:
            raise LookupError("named cookie not present")
        resp = self.auth_provider.validate_token(value)
        if resp.error is not None:
            raise LookupError(str(resp.error))
        if not resp.success or resp.user is None:
            raise LookupError(resp.message or "invalid token")
        return resp.user.username

    def _header_user(self, request: Request) -> str:
        authz = request.headers.get("Authorization", "")
        if not authz:
            raise LookupError("No user found in request")
        if authz.startswith("Bearer"):
            token = authz[len("Bearer "):] if authz.startswith("Bearer ") else authz
            resp = self.auth_provider.validate_token(token)
            if resp.error is None and resp.success and resp.user is not None:
                return resp.user.username
        raise LookupError("Could not ParseJWT")

    def get_user_from_request(self, request: Request) -> str:
        """Return the username from the session cookie, else the bearer token.

        Raises LookupError when neither identifies a user.
        """
        try:
            return self._cookie_user(request)
        except LookupError:
            return self._header_user(request)

    def require_auth(self, handler: Callable[..., Any]) -> Callable[..., Any]:
        """Wrap ``handler`` so it runs with the request's user context set."""

        @functools.wraps(handler)
        def wrapper(request: Request, *args: Any, **kwargs: Any) -> Any:
            terminal = is_terminal(request.headers.get("User-Agent", ""))
            try:
                username = self.get_user_from_request(request)
            except LookupError:
                username = ""
            try:
                space = self.database.get_user_space(username)
            except Exception as exc:
                space = 0
                self.logger.warn(MIDDLEWARE).writef("Error getting user space", exc)
            request.environ[CONTEXT_KEY] = RequestContext(username, terminal, space)
            return handler(request, *args, **kwargs)

        return wrapper