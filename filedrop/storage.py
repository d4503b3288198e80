"""Back-end storage for uploaded objects."""

from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable

from filedrop.events import Dispatcher, ProgressEvent

_KB = 1 << 10
_MB = 1 << 20
_GB = 1 << 30
_TB = 1 << 40

_SNIFF_LEN = 512


def format_size(size: int) -> str:
    """Render a byte count with a binary unit."""
    for limit, unit in ((_TB, "TB"), (_GB, "GB"), (_MB, "MB"), (_KB, "KB")):
        if size >= limit:
            return f"{size / limit:.2f} {unit}"
    return f"{size} B"


_WHITESPACE = b"\t\n\x0c\r "
_HTML_TAGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1", b"<DIV",
    b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B", b"<BODY", b"<BR",
    b"<P", b"<!--",
)
_PREFIXES = (
    (b"%PDF-", "application/pdf"),
    (b"%!PS-Adobe-", "application/postscript"),
    (b"\xfe\xff", "text/plain; charset=utf-16be"),
    (b"\xff\xfe", "text/plain; charset=utf-16le"),
    (b"\xef\xbb\xbf", "text/plain; charset=utf-8"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"\x00\x00\x02\x00", "image/x-icon"),
    (b"BM", "image/bmp"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"ID3", "audio/mpeg"),
    (b"OggS\x00", "application/ogg"),
    (b"MThd\x00\x00\x00\x06", "audio/midi"),
    (b"\x1a\x45\xdf\xa3", "video/webm"),
    (b"\x00\x01\x00\x00", "font/ttf"),
    (b"OTTO", "font/otf"),
    (b"ttcf", "font/collection"),
    (b"wOFF", "font/woff"),
    (b"wOF2", "font/woff2"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"PK\x03\x04", "application/zip"),
    (b"Rar!\x1a\x07\x00", "application/x-rar-compressed"),
    (b"Rar!\x1a\x07\x01\x00", "application/x-rar-compressed"),
    (b"\x00asm", "application/wasm"),
)
_BINARY_BYTES = frozenset([*range(0x00, 0x09), 0x0B, *range(0x0E, 0x1B), *range(0x1C, 0x20)])


def _html(data: bytes) -> str | None:
    body = data.lstrip(_WHITESPACE)
    for tag in _HTML_TAGS:
        if len(body) > len(tag) and body[: len(tag)].upper() == tag and body[len(tag)] in b" >":
            return "text/html; charset=utf-8"
    return None


def _xml(data: bytes) -> str | None:
    body = data.lstrip(_WHITESPACE)
    if body.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    return None


def _prefixed(data: bytes) -> str | None:
    return next((kind for prefix, kind in _PREFIXES if data.startswith(prefix)), None)


def _riff(data: bytes) -> str | None:
    if data[:4] == b"FORM" and data[8:12] == b"AIFF":
        return "audio/aiff"
    if data[:4] != b"RIFF":
        return None
    if data[8:14] == b"WEBPVP":
        return "image/webp"
    if data[8:12] == b"AVI ":
        return "video/avi"
    if data[8:12] == b"WAVE":
        return "audio/wave"
    return None


def _mp4(data: bytes) -> str | None:
    if len(data) < 12:
        return None
    box_size = int.from_bytes(data[:4], "big")
    if len(data) < box_size or box_size % 4 != 0 or data[4:8] != b"ftyp":
        return None
    for start in range(8, box_size, 4):
        if start != 12 and data[start : start + 3] == b"mp4":
            return "video/mp4"
    return None


def _text(data: bytes) -> str | None:
    if _BINARY_BYTES.intersection(data):
        return None
    return "text/plain; charset=utf-8"


_SNIFFERS: tuple[Callable[[bytes], str | None], ...] = (_html, _xml, _prefixed, _riff, _mp4, _text)


def detect_content_type(data: bytes) -> str:
    """Guess a MIME type from at most the first 512 bytes of ``data``."""
    head = bytes(data[:_SNIFF_LEN])
    for sniff in _SNIFFERS:
        kind = sniff(head)
        if kind is not None:
            return kind
    return "application/octet-stream"


@dataclass
class FileInfo:
    """What a storage back end reports about an object."""

    key: str = ""
    filename: str = ""
    id: str = ""
    size: int = 0
    content: str = ""
    stream: BinaryIO | None = None


class ProgressReader:
    """Wraps a readable stream and reports progress for every chunk read."""

    def __init__(
        self,
        src: BinaryIO,
        total: int,
        filename: str,
        upload_id: str,
        dispatcher: Dispatcher,
    ) -> None:
        self.src = src
        self.total = total
        self.bytes_read = 0
        self.filename = filename
        self.upload_id = upload_id
        self.dispatcher = dispatcher

    def read(self, size: int = -1) -> bytes:
        data = self.src.read(size)
        if data:
            self.bytes_read += len(data)
            pct = self.bytes_read / self.total * 100 if self.total > 0 else 0.0
            self.dispatcher.send_event(
                self.upload_id,
                ProgressEvent(self.filename, self.bytes_read, self.total, pct, "Uploading"),
            )
        return data


class Storage(ABC):
    """Stores, retrieves and deletes uploaded objects."""

    @abstractmethod
    def put_object(self, key: str, reader: ProgressReader) -> FileInfo:
        """Store everything ``reader`` yields under ``key``."""

    @abstractmethod
    def get_object(self, key: str) -> FileInfo:
        """Open the object at ``key``; the caller closes ``FileInfo.stream``."""

    @abstractmethod
    def delete_object(self, key: str) -> None:
        """Remove the object at ``key``."""


class Filesystem(Storage):
    """Stores objects as files below a directory."""

    def __init__(self, upload_dir: str | os.PathLike[str]) -> None:
        self.upload_dir = Path(upload_dir)

    def put_object(self, key: str, reader: ProgressReader) -> FileInfo:
        path = self.upload_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as out:
            shutil.copyfileobj(reader, out)
        return FileInfo(key=key, filename=reader.filename, size=path.stat().st_size)

    def get_object(self, key: str) -> FileInfo:
        handle = (self.upload_dir / key).open("rb")
        try:
            size = os.fstat(handle.fileno()).st_size
            head = handle.read(_SNIFF_LEN)
            if not head:
                raise EOFError(f"object {key!r} is empty")
            handle.seek(0)
        except BaseException:
            handle.close()
            raise
        return FileInfo(stream=handle, content=detect_content_type(head), size=size)

    def delete_object(self, key: str) -> None:
        (self.upload_dir / key).unlink()