"""Common helpers: ports, timestamps and content hashes."""

import hashlib
import socket
from datetime import datetime, timezone


def get_random_port() -> tuple[socket.socket, int]:
    """Bind a socket to a free local port and return it with the port number.

    The caller keeps the socket open and hands its file descriptor to the
    server so the port cannot be taken in between.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    sock.listen(128)
    return sock, sock.getsockname()[1]


def utc_now() -> str:
    """Current UTC time in RFC 3339 format with second precision."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def content_hash(data: bytes) -> str:
    """Fingerprint of file content, as stored in the review state file."""
    return "sha256:" + hashlib.sha256(data).hexdigest()
