"""Stable content hashing and exact-text script reading."""

import hashlib
from pathlib import Path

CONTENT_ENCODING = "utf-8"


def content_hash(text: str) -> str:
    """Hash script text.

    Args:
        text: Script text.

    Returns:
        Upper-case hex SHA-256 of the UTF-8 encoded text.
    """
    return hashlib.sha256(text.encode(CONTENT_ENCODING)).hexdigest().upper()


def read_script_text(path: Path) -> str:
    """Read a script file without newline translation.

    A leading byte-order mark is dropped so that files saved by Windows editors
    hash the same as the logged script text.

    Raises:
        OSError: If the file cannot be read.
        UnicodeDecodeError: If the file is not valid UTF-8.
    """
    with open(path, encoding="utf-8-sig", newline="") as handle:
        return handle.read()
