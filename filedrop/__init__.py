"""Storage, metadata, sign-in, progress events and request handlers for a file transfer service."""

__version__ = "0.1.0"