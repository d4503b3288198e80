"""Page templates, the error page and the login and logout handlers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, Template
from werkzeug.utils import redirect
from werkzeug.wrappers import Request, Response

from filedrop.auth import AuthProvider
from filedrop.database import Database
from filedrop.logger import Logger
from filedrop.middleware import COOKIE_NAME, get_is_terminal, get_username

SESSION_LIFETIME = timedelta(hours=1)

_HTML = "text/html"
_TEXT = "text/plain"


@dataclass
class Templates:
    """The parsed page templates; ``*_term`` ones are plain text for command-line clients."""

    login: Template
    home: Template
    error: Template
    home_term: Template
    result_term: Template


def load_templates(directory: str | Path) -> Templates:
    """Parse every page template in ``directory``.

    Raises jinja2.TemplateNotFound if one is missing and
    jinja2.TemplateSyntaxError if one does not parse.
    """
    loader = FileSystemLoader(str(directory))
    html = Environment(loader=loader, autoescape=True, keep_trailing_newline=True)
    text = Environment(loader=loader, autoescape=False, keep_trailing_newline=True)
    return Templates(
        login=html.get_template("login.tmpl"),
        home=html.get_template("home.tmpl"),
        error=html.get_template("error.tmpl"),
        home_term=text.get_template("home_term.tmpl"),
        result_term=text.get_template("result_term.tmpl"),
    )


def _error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, mimetype=_TEXT)
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def handle_error(request: Request, templates: Templates) -> Response:
    """Render the generic error page."""
    return Response(templates.error.render(), mimetype=_HTML)


class AuthHandler:
    """Handles logging in and out."""

    def __init__(
        self,
        auth_provider: AuthProvider | None,
        database: Database,
        logger: Logger,
        templates: Templates,
    ) -> None:
        self.auth_provider = auth_provider
        self.database = database
        self.logger = logger
        self.templates = templates

    def set_auth_cookie(self, response: Response, value: str, expiry: timedelta) -> None:
        """Start a browser session holding the signed token ``value``."""
        response.set_cookie(
            COOKIE_NAME,
            value,
            max_age=int(expiry.total_seconds()),
            path="/",
            httponly=True,
            secure=True,
            samesite="Lax",
        )

    def clear_auth_cookie(self, response: Response) -> None:
        """End the browser session; the token itself stays valid until it expires."""
        response.set_cookie(
            COOKIE_NAME,
            "",
            max_age=0,
            path=None,
            httponly=True,
            secure=True,
            samesite="Lax",
        )

    def logout(self, request: Request) -> Response:
        response = redirect("/login", 302)
        self.clear_auth_cookie(response)
        return response

    def login_get(self, request: Request) -> Response:
        if get_username(request):
            return redirect("/", 302)
        if get_is_terminal(request):
            return Response("Login with POST\n", mimetype=_TEXT)
        return Response(self.templates.login.render(), mimetype=_HTML)

    def login(self, request: Request) -> Response:
        if get_username(request):
            return redirect("/", 302)
        if self.auth_provider is None:
            self.logger.info().write("The auth provider is not there")
            return _error("Internal error during auth", 500)

        resp = self.auth_provider.authenticate(request.form)
        if resp.error is not None:
            self.logger.warn().writef("Authentication error", resp.error)
            return _error("Internal error during auth", 500)
        if not resp.success or resp.user is None:
            return _error("Invalid username or password", 500)

        resp = self.auth_provider.generate_token(resp)
        try:
            self.database.put_user(resp.user.username)
        except Exception as exc:
            self.logger.error().writef("Could not record user", exc)

        if get_is_terminal(request):
            body = json.dumps({"token": resp.jwt_token}, separators=(",", ":")) + "\n"
            return Response(body, mimetype="application/json")
        response = redirect("/", 302)
        self.set_auth_cookie(response, resp.jwt_token, SESSION_LIFETIME)
        return response