# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Content-addressed file store for detected scripts."""

import logging
import os
import tempfile
from pathlib import Path

from osd.content import CONTENT_ENCODING
from osd.persistence import PersistenceError

logger = logging.getLogger(__name__)


class FileResultStore:
    """Write each script to ``<results_dir>/<hash>.<extension>``."""

    def __init__(self, results_dir: Path, extension: str = "ps1") -> None:
        """Initialize the store.

        Args:
            results_dir: Target directory, created on first write.
            extension: File extension without the leading dot.

        Raises:
            ValueError: If ``extension`` is empty or contains a path separator.
        """
        extension = extension.lstrip(".")
        if not extension or "/" in extension or os.sep in extension:
            raise ValueError("extension must be a plain file extension")
        self._results_dir = results_dir
        self._extension = extension

    def path_for(self, content_hash: str) -> Path:
        return self._results_dir / f"{content_hash}.{self._extension}"

    def store(self, content_hash: str, content: str) -> str:
        """Store content under its hash.

        Writing an existing hash again leaves an identical file in place and
        rewrites one whose bytes differ.

        Args:
            content_hash: Hash of ``content``.
            content: Script text.

        Returns:
            Path of the stored file.

        Raises:
            PersistenceError: If the directory or file cannot be written.
        """
        target = self.path_for(content_hash)
        payload = content.encode(CONTENT_ENCODING)
        try:
            if target.is_file() and target.read_bytes() == payload:
                return str(target)
            self._results_dir.mkdir(parents=True, exist_ok=True)
            # Readers never observe a partially written result file.
            fd, temp_name = tempfile.mkstemp(
                dir=self._results_dir, prefix=f".{content_hash}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(payload)
                os.replace(temp_name, target)
            except OSError:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.warning(
                f"Failed to store result (results_dir={self._results_dir} "
                f"hash={content_hash} error={exc})"
            )
            raise PersistenceError(str(exc)) from exc
        return str(target)
