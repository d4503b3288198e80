"""File and user metadata storage."""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    ownerid   TEXT NOT NULL,
    objkey    TEXT NOT NULL UNIQUE,
    filename  TEXT NOT NULL,
    id        TEXT NOT NULL,
    size      INTEGER NOT NULL,
    expiresat TEXT
);
CREATE TABLE IF NOT EXISTS users (
    username TEXT PRIMARY KEY,
    space    INTEGER NOT NULL DEFAULT 0
);
"""

_FILE_COLUMNS = "ownerid, objkey, filename, id, size, expiresat"


@dataclass
class File:
    """Metadata of one stored upload."""

    owner_id: str
    objkey: str
    filename: str
    id: str
    size: int
    expires_at: datetime | None = None


@dataclass
class User:
    """A user and the space their files take up."""

    username: str
    space: int = 0


@dataclass
class PutFileParams:
    """Metadata of a new upload to record."""

    owner_id: str
    objkey: str
    filename: str
    id: str
    size: int
    expires_at: datetime | None = None


class Database(ABC):
    """Keeps metadata about files and users; the files themselves live in storage."""

    @abstractmethod
    def get_all_files(self) -> list[File]:
        """Return every recorded file."""

    @abstractmethod
    def get_user_files(self, owner_id: str) -> list[File]:
        """Return the files owned by ``owner_id``."""

    @abstractmethod
    def put_file(self, params: PutFileParams) -> None:
        """Record a new file."""

    @abstractmethod
    def delete_file(self, objkey: str) -> None:
        """Forget the file stored under ``objkey``."""

    @abstractmethod
    def get_all_users(self) -> list[User]:
        """Return every known user."""

    @abstractmethod
    def put_user(self, username: str) -> None:
        """Add a user with no used space, unless already known."""

    @abstractmethod
    def get_user_space(self, username: str) -> int:
        """Return the recorded used space; raise LookupError for an unknown user."""

    @abstractmethod
    def recalculate_user_space(self, username: str) -> None:
        """Set the user's used space to the total size of their files."""

    @abstractmethod
    def close(self) -> None:
        """Release the connection."""

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _file_from_row(row: tuple) -> File:
    owner_id, objkey, filename, file_id, size, expires = row
    return File(
        owner_id=owner_id,
        objkey=objkey,
        filename=filename,
        id=file_id,
        size=size,
        expires_at=datetime.fromisoformat(expires) if expires else None,
    )


class SqliteDatabase(Database):
    """Database kept in an SQLite file (or ``:memory:``)."""

    def __init__(self, path: str | Path) -> None:
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.executescript(_SCHEMA)

    def _query(self, sql: str, args: tuple = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, args).fetchall()

    def _exec(self, sql: str, args: tuple = ()) -> None:
        with self._lock, self._conn:
            self._conn.execute(sql, args)

    def get_all_files(self) -> list[File]:
        return [_file_from_row(row) for row in self._query(f"SELECT {_FILE_COLUMNS} FROM files")]

    def get_user_files(self, owner_id: str) -> list[File]:
        rows = self._query(f"SELECT {_FILE_COLUMNS} FROM files WHERE ownerid = ?", (owner_id,))
        return [_file_from_row(row) for row in rows]

    def put_file(self, params: PutFileParams) -> None:
        expires = params.expires_at.isoformat() if params.expires_at else None
        self._exec(
            f"INSERT INTO files ({_FILE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            (params.owner_id, params.objkey, params.filename, params.id, params.size, expires),
        )

    def delete_file(self, objkey: str) -> None:
        self._exec("DELETE FROM files WHERE objkey = ?", (objkey,))

    def get_all_users(self) -> list[User]:
        return [User(username, space) for username, space in self._query("SELECT username, space FROM users")]

    def put_user(self, username: str) -> None:
        self._exec(
            "INSERT INTO users (username, space) VALUES (?, 0) ON CONFLICT (username) DO NOTHING",
            (username,),
        )

    def get_user_space(self, username: str) -> int:
        rows = self._query("SELECT space FROM users WHERE username = ?", (username,))
        if not rows:
            raise LookupError(f"no user named {username!r}")
        return rows[0][0]

    def recalculate_user_space(self, username: str) -> None:
        self._exec(
            "UPDATE users SET space = coalesce("
            "(SELECT sum(size) FROM files WHERE files.ownerid = users.username), 0) "
            "WHERE username = ?",
            (username,),
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()