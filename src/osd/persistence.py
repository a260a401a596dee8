# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Persistence contracts."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Represent a failed result write."""


class ResultStore(Protocol):
    """Define the contract for content-addressed result storage."""

    def store(self, content_hash: str, content: str) -> str:
        """Store content under its hash.

        Args:
            content_hash: Hash of ``content``; used as the storage key.
            content: Script text.

        Returns:
            Location of the stored content.

        Raises:
            PersistenceError: If the content cannot be written.
        """
