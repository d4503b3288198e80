# filedrop

Building blocks for a small self-hosted file transfer service. A signed-in
user uploads one or more files in a single multipart request. The files are
packed into one zip archive and stored under the user's name. Each user has a
quota. Browsers can follow an upload's progress through server-sent events.
Command-line clients such as `curl`, `wget` or HTTPie get plain-text or JSON
responses in place of HTML pages.

The request handlers take a `werkzeug.wrappers.Request` and return a
`werkzeug.wrappers.Response`. You route requests to them yourself.

## Installation

```
pip install filedrop
```

## Modules

### `filedrop.storage`

- `Filesystem(upload_dir)` stores objects as files below a directory.
  - `put_object(key, reader)` copies the reader's data to `upload_dir/key` and creates directories as needed.
  - `get_object(key)` returns a `FileInfo` with an open `stream`, a sniffed `content` type and the `size`. It raises `EOFError` for an empty object.
  - `delete_object(key)` removes the file.
- `ProgressReader(src, total, filename, upload_id, dispatcher)` wraps a binary stream. For every chunk it reads, it sends a `ProgressEvent` with the message `"Uploading"`.
- `format_size(size)` renders a byte count with a binary unit, e.g. `format_size(1536) == "1.50 KB"`.
- `detect_content_type(data)` guesses a MIME type from the first 512 bytes.

### `filedrop.events`

- `ProgressEvent` holds `filename`, `transferred`, `total`, `percentage` and `message`. `to_json()` writes the wire form `{"filename", "bytes", "total_bytes", "percentage", "message"}` and leaves out an empty filename, total or message. `event_from_json(data)` parses that form back.
- `Subscriber` buffers up to 64 events. When the buffer is full, new events are dropped. `get(timeout)` returns the next event, or `None` on timeout or after `close()`.
- `MemDispatcher` routes events to subscribers inside one process.
- `RedisDispatcher(addr, client=None)` publishes events on `upload:<id>` channels. A background thread listens on `upload:*` and delivers each message to the local subscriber, so any process can report progress. Call `close()` to stop it.

### `filedrop.auth`

- `DevProvider(username, password, secret, expiry)` accepts one fixed username and password.
  - `authenticate(form)` checks the `username` and `password` fields.
  - `generate_token(response)` signs an HS256 JWT with a `user` claim.
  - `validate_token(token)` verifies the token and returns the user.
- `JWTSigner` carries the token logic on its own.
- `AuthProvider` is the interface for further providers.

### `filedrop.database`

- `SqliteDatabase(path)` keeps file and user metadata in SQLite. The path may be `":memory:"`.
  - Methods: `put_file`, `get_user_files`, `get_all_files`, `delete_file`, `put_user`, `get_all_users`, `get_user_space` and `recalculate_user_space`.
  - `get_user_space` raises `LookupError` for an unknown user.
  - `recalculate_user_space` sets a user's used space to the total size of their files.

### `filedrop.logger`

`Logger(log_file_path, stream=None)` writes coloured lines, for example
`log.warn(UPLOAD).write("...")`. Info lines go to `stream`, or to standard
output when no stream is given. Warnings and errors are appended to the log
file.

### `filedrop.middleware`

`Middleware(auth_provider, database, logger).require_auth(handler)` wraps a
handler. Before the handler runs, the wrapper:

- reads the user from the `auth-token` cookie or, failing that, from an `Authorization: Bearer token` header;
- checks whether the User-Agent is a command-line client;
- looks up the user's used space.

Handlers read these values with `get_username`, `get_is_terminal` and
`get_user_used_space`.

### `filedrop.handlers` and `filedrop.files`

`load_templates(directory)` parses the page templates with Jinja2. The
directory must hold these files:

| Template           | Used for                 | Variables                                                                 |
|--------------------|--------------------------|---------------------------------------------------------------------------|
| `login.tmpl`       | Login page               | none                                                                      |
| `error.tmpl`       | Error page               | none                                                                      |
| `home.tmpl`        | Home page (HTML)         | `server`, `user`, `upload_id`, `space`, `files`, `max_space`, `format_size` |
| `home_term.tmpl`   | Home page (plain text)   | same as `home.tmpl`                                                       |
| `result_term.tmpl` | Upload result (plain text) | `download_link`, `direct_presigned`, `expires_in_seconds`               |

`AuthHandler(auth_provider, database, logger, templates)` provides these
handlers:

- `login_get` shows the login page.
- `login` signs the user in:
  - terminal clients get `{"token": "..."}`;
  - browsers get an `auth-token` cookie valid for one hour and a redirect to `/`.
- `logout` clears the cookie.

`MainHandlers(storage, database, dispatcher, max_space, domain, logger, templates)`
provides these handlers:

- `home` lists the user's files and their total size.
- `upload` handles a multipart upload:
  - It answers 400 `No more space` when the request's Content-Length exceeds the remaining quota.
  - An optional `filename` field names the archive. Only its first 32 bytes are used, and they are sanitised. Without the field the archive is named `archive-<timestamp>.zip`.
  - The archive is stored as `<user>/<uuid>.zip` and recorded with an expiry seven days ahead.
  - Progress goes to the dispatcher under the `id` query parameter.
  - The response holds the download link `<host>/download/<user>/<uuid>.zip`.
- `download` streams `/download/<user>/<id>` as an attachment. For `/download/<id>` it uses the signed-in user.
- `delete` removes the file named by the last path element or by the `file` form field. It needs a multipart body.
- `sse_handler` streams the events for the `id` query parameter:
  - it first sends an `event: connected` message;
  - each event follows as a `data:` line;
  - it sends a keep-alive comment every 15 seconds.

## What this package does not do

- It has no command to start a server.
- It has no ready-made WSGI application that routes URLs to the handlers. You need your own routing.
- It does not read configuration from the environment.
- Upload expiry dates are recorded in the database, but nothing in the package deletes expired files.
- It provides one storage backend (`Filesystem`), one database (`SqliteDatabase`) and one sign-in provider (`DevProvider`).