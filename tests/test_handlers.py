import io
import json
from datetime import timedelta

import jinja2
import pytest
from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request, Response

from filedrop.auth import DevProvider
from filedrop.database import SqliteDatabase
from filedrop.handlers import AuthHandler, handle_error, load_templates
from filedrop.logger import Logger
from filedrop.middleware import CONTEXT_KEY, COOKIE_NAME, RequestContext

PASSWORD = "password"

TEMPLATE_FILES = {
    "login.tmpl": "LOGIN PAGE",
    "home.tmpl": "Hello {{ User }}",
    "error.tmpl": "ERROR PAGE",
    "home_term.tmpl": "term {{ User }}",
    "result_term.tmpl": "{{ DownloadLink }}",
}


@pytest.fixture
def template_dir(tmp_path):
    directory = tmp_path / "templates"
    directory.mkdir()
    for name, body in TEMPLATE_FILES.items():
        (directory / name).write_text(body)
    return directory


@pytest.fixture
def provider():
    return DevProvider("dev", PASSWORD, "secret", timedelta(hours=1))


@pytest.fixture
def database():
    db = SqliteDatabase(":memory:")
    yield db
    db.close()


@pytest.fixture
def handler(tmp_path, template_dir, provider, database):
    logger = Logger(tmp_path / "log.txt", stream=io.StringIO())
    yield AuthHandler(provider, database, logger, load_templates(template_dir))
    logger.close()


def make_request(method="GET", path="/login", data=None, context=None):
    request = Request(EnvironBuilder(method=method, path=path, data=data).get_environ())
    request.environ[CONTEXT_KEY] = context or RequestContext()
    return request


def set_cookie_headers(response):
    return response.headers.getlist("Set-Cookie")


def test_missing_template_raises(tmp_path):
    with pytest.raises(jinja2.TemplateNotFound):
        load_templates(tmp_path)


def test_html_templates_escape_and_text_templates_do_not(template_dir):
    templates = load_templates(template_dir)
    assert templates.home.render(User="<b>") == "Hello &lt;b&gt;"
    assert templates.home_term.render(User="<b>") == "term <b>"


def test_handle_error_renders_error_page(template_dir):
    response = handle_error(make_request(), load_templates(template_dir))
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "ERROR PAGE"


def test_set_auth_cookie_attributes(handler):
    response = Response()
    handler.set_auth_cookie(response, "token", timedelta(hours=1))
    (cookie,) = set_cookie_headers(response)
    assert cookie.startswith(f"{COOKIE_NAME}=token")
    assert "Max-Age=3600" in cookie
    assert "HttpOnly" in cookie
    assert "Secure" in cookie
    assert "SameSite=Lax" in cookie
    assert "Path=/" in cookie


def test_clear_auth_cookie_expires_session(handler):
    response = Response()
    handler.clear_auth_cookie(response)
    (cookie,) = set_cookie_headers(response)
    assert cookie.startswith(f"{COOKIE_NAME}=;")
    assert "Max-Age=0" in cookie


def test_logout_redirects_and_clears_cookie(handler):
    response = handler.logout(make_request(path="/logout"))
    assert response.status_code == 302
    assert response.headers["Location"] == "/login"
    assert any("Max-Age=0" in c for c in set_cookie_headers(response))


def test_login_get_redirects_logged_in_user(handler):
    response = handler.login_get(make_request(context=RequestContext(username="dev")))
    assert response.status_code == 302
    assert response.headers["Location"] == "/"


def test_login_get_terminal(handler):
    response = handler.login_get(make_request(context=RequestContext(is_terminal=True)))
    assert response.get_data(as_text=True) == "Login with POST\n"


def test_login_get_browser_renders_page(handler):
    response = handler.login_get(make_request())
    assert response.get_data(as_text=True) == "LOGIN PAGE"
    assert response.mimetype == "text/html"


def test_login_browser_sets_valid_session(handler, provider, database):
    request = make_request("POST", data={"username": "dev", "password": PASSWORD})
    response = handler.login(request)
    assert response.status_code == 302
    assert response.headers["Location"] == "/"
    (cookie,) = set_cookie_headers(response)
    value = cookie.split(";", 1)[0].split("=", 1)[1]
    checked = provider.validate_token(value)
    assert checked.success
    assert checked.user.username == "dev"
    assert database.get_user_space("dev") == 0


def test_login_terminal_returns_json_token(handler, provider):
    request = make_request(
        "POST",
        data={"username": "dev", "password": PASSWORD},
        context=RequestContext(is_terminal=True),
    )
    response = handler.login(request)
    assert response.mimetype == "application/json"
    body = response.get_data(as_text=True)
    assert body.endswith("\n")
    token = json.loads(body)["token"]
    assert provider.validate_token(token).user.uid == "dev"


def test_login_wrong_password(handler, database):
    request = make_request("POST", data={"username": "dev", "password": "placeholder"})
    response = handler.login(request)
    assert response.status_code == 500
    assert response.get_data(as_text=True) == "Invalid username or password\n"
    with pytest.raises(LookupError):
        database.get_user_space("dev")


def test_login_empty_form(handler):
    response = handler.login(make_request("POST", data={}))
    assert response.status_code == 500
    assert response.get_data(as_text=True) == "Internal error during auth\n"


def test_login_when_already_logged_in(handler):
    request = make_request(
        "POST",
        data={"username": "dev", "password": PASSWORD},
        context=RequestContext(username="dev"),
    )
    response = handler.login(request)
    assert response.status_code == 302
    assert set_cookie_headers(response) == []