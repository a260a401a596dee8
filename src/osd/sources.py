# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Normalize raw text, files, directories, URLs and reassembled scripts into inputs."""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

import pathspec
import requests

from osd.content import read_script_text
from osd.model import InputItem, ReassembledScript

logger = logging.getLogger(__name__)

DEFAULT_INCLUDE_PATTERNS: tuple[str, ...] = ("*.ps1", "*.psm1", "*.psd1")
DEFAULT_FETCH_TIMEOUT_SECONDS = 30.0


class SourceError(RuntimeError):
    """Represent an input that could not be read or fetched."""


@dataclass(frozen=True)
class SourceFailure:
    """Represent one skipped input."""

    source: str
    message: str


def from_text(text: str, source: str = "text") -> InputItem:
    return InputItem(source=source, content=text)


def read_file(path: Path) -> InputItem:
    """Read one script file.

    Raises:
        SourceError: If the file is unreadable or not UTF-8.
    """
    try:
        content = read_script_text(path)
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning(f"Failed to read input file (path={path} error={exc})")
        raise SourceError(f"Cannot read {path}: {exc}") from exc
    return InputItem(source=str(path), content=content)


def collect_directory(
    root: Path, include: Sequence[str] = DEFAULT_INCLUDE_PATTERNS
) -> tuple[list[InputItem], list[SourceFailure]]:
    """Read every matching script beneath a directory.

    Args:
        root: Directory to scan.
        include: Gitignore-style patterns selecting files to read.

    Returns:
        Items in sorted path order and the files that could not be read.
    """
    spec = pathspec.GitIgnoreSpec.from_lines(include)
    items: list[InputItem] = []
    failures: list[SourceFailure] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        if not spec.match_file(path.relative_to(root).as_posix()):
            continue
        try:
            items.append(read_file(path))
        except SourceError as exc:
            failures.append(SourceFailure(source=str(path), message=str(exc)))
    logger.info(
        f"Directory scan completed (path={root} items={len(items)} failures={len(failures)})"
    )
    return items, failures


def fetch_url(
    url: str,
    timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    session: requests.Session | None = None,
) -> InputItem:
    """Fetch a script body over HTTP(S).

    Args:
        url: Script URL.
        timeout: Request timeout in seconds.
        session: Optional session to reuse connections.

    Returns:
        Input item whose source is the URL.

    Raises:
        SourceError: If the request fails or returns a non-success status.
    """
    client = session or requests
    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning(f"Failed to fetch input URL (url={url} error={exc})")
        raise SourceError(f"Cannot fetch {url}: {exc}") from exc
    return InputItem(source=url, content=response.text)


def from_reassembled(scripts: Iterable[ReassembledScript]) -> list[InputItem]:
    """Turn reassembled scripts into pipeline inputs."""
    return [
        InputItem(source=f"scriptblock:{script.script_id}", content=script.text)
        for script in scripts
    ]
