"""Handlers for the file pages: home, upload, download, delete and progress streaming."""

from __future__ import annotations

import posixpath
import re
import shutil
import tempfile
import time
import uuid
import zipfile
from collections.abc import Iterator, Mapping
from datetime import datetime, timedelta

from werkzeug.utils import redirect
from werkzeug.wrappers import Request, Response
from werkzeug.wsgi import wrap_file

from filedrop.database import Database, PutFileParams
from filedrop.events import Dispatcher, ProgressEvent, Subscriber
from filedrop.handlers import Templates
from filedrop.logger import DATABASE, DELETE, STORAGE, UPLOAD, Logger
from filedrop.middleware import get_is_terminal, get_user_used_space, get_username
from filedrop.storage import Storage, ProgressReader, format_size

FILE_LIFETIME = timedelta(days=7)
RESULT_EXPIRES_IN_SECONDS = 4

_FILENAME_LIMIT = 32
_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]")
_TEXT = "text/plain"
_HTML = "text/html"
_CONNECTED = 'event: connected\ndata: {"message": "Connected, ready for upload"}\n\n'


def _base(path: str) -> str:
    """Last element of a slash-separated path, ignoring trailing slashes."""
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def _dir(path: str) -> str:
    """Everything but the last element of a slash-separated path, cleaned."""
    head = path[: path.rfind("/") + 1]
    return posixpath.normpath(head) if head else "."


def _extension(name: str) -> str:
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def _error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, mimetype=_TEXT)
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def sanitize_filename(data: bytes) -> str:
    """Keep the last path element and replace unsafe characters with underscores."""
    name = _base(bytes(data).decode("utf-8", errors="replace"))
    return _UNSAFE.sub("_", name)


def _archive_name(form: Mapping[str, str]) -> str:
    raw = (form.get("filename") or "").encode("utf-8")[:_FILENAME_LIMIT]
    if not raw:
        return f"archive-{int(time.time())}.zip"
    return f"{sanitize_filename(raw)}.zip"


class MainHandlers:
    """Handlers for listing, uploading, downloading and deleting files."""

    keepalive_interval = 15.0

    def __init__(
        self,
        storage: Storage,
        database: Database,
        dispatcher: Dispatcher,
        max_space: int,
        domain: str,
        logger: Logger,
        templates: Templates,
    ) -> None:
        self.storage = storage
        self.database = database
        self.dispatcher = dispatcher
        self.max_space = max_space
        self.domain = domain
        self.logger = logger
        self.templates = templates

    def home(self, request: Request) -> Response:
        """Show the user's files and how much space they use."""
        username = get_username(request)
        if not username:
            return redirect("/login", 302)
        try:
            files = self.database.get_user_files(username)
        except Exception as exc:
            self.logger.error(DATABASE).writef("Get files from database error", exc)
            return _error(f"Failed to get files: {exc}", 500)

        data = {
            "server": self.domain,
            "user": username,
            "upload_id": str(uuid.uuid4()),
            "space": sum(f.size for f in files),
            "files": files,
            "max_space": self.max_space,
            "format_size": format_size,
        }
        if get_is_terminal(request):
            return Response(self.templates.home_term.render(**data), mimetype=_TEXT)
        return Response(self.templates.home.render(**data), mimetype=_HTML)

    def upload(self, request: Request) -> Response:
        """Zip the uploaded files into one archive and store it for a week."""
        username = get_username(request)
        if not username:
            return redirect("/login", 302)

        length = request.content_length
        if length is not None and length > self.max_space - get_user_used_space(request):
            self.logger.warn(UPLOAD).write(f"User {username} has no more space")
            return _error("No more space", 400)
        if request.mimetype != "multipart/form-data":
            return _error("Invalid form data", 400)

        try:
            file_name = _archive_name(request.form)
            parts = list(request.files.items(multi=True))
        except ValueError as exc:
            self.logger.error(UPLOAD).writef("Error opening file", exc)
            return _error("Invalid form data", 400)

        obj_id = str(uuid.uuid4()) + _extension(file_name)
        object_key = f"{username}/{obj_id}"
        expires_at = datetime.now() + FILE_LIFETIME
        upload_id = request.args.get("id", "")

        with tempfile.TemporaryFile() as spool:
            try:
                with zipfile.ZipFile(spool, "w", zipfile.ZIP_DEFLATED) as archive:
                    for _, part in parts:
                        with archive.open(part.filename or "", "w") as entry:
                            shutil.copyfileobj(part.stream, entry)
            except (OSError, zipfile.BadZipFile, ValueError) as exc:
                self.logger.error(UPLOAD).writef("Error writing to zip", exc)
                return _error("Internal Server Error", 500)
            spool.seek(0)
            reader = ProgressReader(spool, -1, file_name, upload_id, self.dispatcher)
            try:
                info = self.storage.put_object(object_key, reader)
            except Exception as exc:
                self.logger.error(UPLOAD).writef("Failed to save to storage", exc)
                return _error("Internal Server Error", 500)

        failed = False
        try:
            self.database.put_file(
                PutFileParams(
                    owner_id=username,
                    objkey=info.key,
                    filename=info.filename,
                    id=obj_id,
                    size=info.size,
                    expires_at=expires_at,
                )
            )
        except Exception as exc:
            self.logger.error(UPLOAD).writef("Failed to upload metadata to database", exc)
            failed = True
        try:
            self.database.recalculate_user_space(username)
        except Exception as exc:
            self.logger.error(UPLOAD).writef("Failed to Recalculate User Space", exc)
            failed = True

        self.logger.info(UPLOAD).write(f"Uploaded: {info.filename} ({info.size} bytes)")
        self.dispatcher.send_event(
            reader.upload_id,
            ProgressEvent(file_name, info.size, info.size, 100.0, "Upload complete"),
        )
        if failed:
            return _error("Internal Server Error", 500)

        download_link = f"{request.host}/download/{username}/{obj_id}"
        if get_is_terminal(request):
            body = self.templates.result_term.render(
                download_link=download_link,
                direct_presigned="",
                expires_in_seconds=RESULT_EXPIRES_IN_SECONDS,
            )
            return Response(body, mimetype=_TEXT)
        return Response(f"Successful upload: {download_link}", mimetype=_TEXT)

    def download(self, request: Request) -> Response:
        """Stream a stored object as an attachment."""
        path = request.path
        username = _base(_dir(path))
        if not username:
            return redirect("/login", 302)
        if username == "download":
            username = get_username(request)
            if not username:
                return _error("Please login", 401)

        file_id = _base(path)
        if not file_id or file_id == "download":
            return _error("404 page not found", 404)
        object_key = f"{username}/{file_id}"

        try:
            info = self.storage.get_object(object_key)
        except Exception as exc:
            self.logger.error(STORAGE).writef("Error getting object", exc)
            return _error("Internal Server Error", 500)

        response = Response(wrap_file(request.environ, info.stream))
        response.headers["Content-Disposition"] = f'attachment; filename="{info.filename}"'
        response.headers["Content-Type"] = info.content
        response.headers["Content-Length"] = str(info.size)
        return response

    def delete(self, request: Request) -> Response:
        """Remove one of the user's files, named in the path or the form."""
        username = get_username(request)
        if not username:
            return redirect("/login", 302)

        file_id_path = _base(request.path)
        if request.mimetype != "multipart/form-data":
            return _error("Invalid form data", 400)
        try:
            file_id_form = request.form.get("file", "")
        except ValueError:
            return _error("Invalid form data", 400)

        if not file_id_path and not file_id_form:
            return redirect("/", 302)
        if not file_id_form and file_id_path != "delete":
            file_id = file_id_path
        elif not file_id_path or file_id_path == "delete":
            file_id = file_id_form
        else:
            return redirect("/", 302)

        object_key = f"{username}/{file_id}"
        try:
            self.storage.delete_object(object_key)
        except Exception as exc:
            self.logger.error(STORAGE).writef("Error deleting object", exc)

        try:
            self.database.delete_file(object_key)
        except Exception as exc:
            self.logger.error(DELETE).writef("Error deleting file from database", exc)
            return _error("Internal Server Error", 500)
        try:
            self.database.recalculate_user_space(username)
        except Exception as exc:
            self.logger.error(DELETE).writef("Error recalculating user used space", exc)
            return _error("Internal Server Error", 500)

        self.logger.info(DELETE).write(f"File {object_key} deleted successfully")
        return redirect("/", 302)

    def sse_handler(self, request: Request) -> Response:
        """Stream the progress events of one upload as server-sent events."""
        upload_id = request.args.get("id", "")
        if not upload_id:
            return _error("Missing id", 400)

        subscriber = Subscriber()
        self.dispatcher.add_subscriber(upload_id, subscriber)
        interval = self.keepalive_interval

        def stream() -> Iterator[str]:
            yield _CONNECTED
            while True:
                event = subscriber.get(timeout=interval)
                if event is not None:
                    yield f"data: {event.to_json()}\n\n"
                elif subscriber.closed:
                    return
                else:
                    yield ": keepalive\n\n"

        cleaned = False

        def cleanup() -> None:
            nonlocal cleaned
            if cleaned:
                return
            cleaned = True
            self.dispatcher.del_subscriber(upload_id)
            subscriber.close()

        response = Response(stream(), content_type="text/event-stream")
        response.headers["Cache-Control"] = "no-cache"
        response.call_on_close(cleanup)
        return response