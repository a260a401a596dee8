# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Map generic JSON log records to log fragments."""

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from osd.model import LogFragment

logger = logging.getLogger(__name__)

# Accepted keys per fragment field, in lookup order. Script block logging
# exports (event 4104) use the first spelling.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "script_id": ("ScriptBlockId", "script_id", "scriptId"),
    "sequence_number": ("MessageNumber", "sequence_number", "sequenceNumber"),
    "chunk_total": ("MessageTotal", "chunk_total", "chunkTotal"),
    "payload": ("ScriptBlockText", "payload"),
    "timestamp": ("TimeCreated", "timestamp"),
    "level": ("LevelDisplayName", "Level", "level"),
    "host": ("MachineName", "Computer", "host"),
    "instance": ("ProcessId", "instance"),
}

_REQUIRED_FIELDS = ("script_id", "sequence_number", "chunk_total", "payload")


@dataclass(frozen=True)
class FragmentRecordError:
    """Represent one record that could not be mapped."""

    position: int
    message: str


def _lookup(record: Mapping[str, Any], field_name: str) -> Any:
    for key in FIELD_ALIASES[field_name]:
        if key in record and record[key] is not None:
            return record[key]
    return None


def fragment_from_record(record: Mapping[str, Any]) -> LogFragment:
    """Map one record to a fragment.

    Raises:
        ValueError: If a required field is missing or not numeric where expected.
    """
    missing = [name for name in _REQUIRED_FIELDS if _lookup(record, name) is None]
    if missing:
        raise ValueError(f"missing fields: {', '.join(missing)}")
    host = _lookup(record, "host")
    instance = _lookup(record, "instance")
    return LogFragment(
        script_id=str(_lookup(record, "script_id")),
        sequence_number=int(_lookup(record, "sequence_number")),
        chunk_total=int(_lookup(record, "chunk_total")),
        payload=str(_lookup(record, "payload")),
        timestamp=str(_lookup(record, "timestamp") or ""),
        level=str(_lookup(record, "level") or ""),
        host=None if host is None else str(host),
        instance=None if instance is None else str(instance),
    )


def fragments_from_records(
    records: Iterable[Mapping[str, Any]],
) -> tuple[list[LogFragment], list[FragmentRecordError]]:
    """Map records to fragments, collecting the ones that fail.

    Args:
        records: Decoded log records in observation order.

    Returns:
        Fragments in input order and per-record errors.
    """
    fragments: list[LogFragment] = []
    errors: list[FragmentRecordError] = []
    for position, record in enumerate(records):
        if not isinstance(record, Mapping):
            errors.append(
                FragmentRecordError(position=position, message="record is not an object")
            )
            continue
        try:
            fragments.append(fragment_from_record(record))
        except (TypeError, ValueError) as exc:
            logger.warning(f"Skipping log record (position={position} error={exc})")
            errors.append(FragmentRecordError(position=position, message=str(exc)))
    return fragments, errors


def read_fragment_file(
    path: Path,
) -> tuple[list[LogFragment], list[FragmentRecordError]]:
    """Read fragments from a JSON array file or a JSON-lines file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file is neither a JSON array nor JSON lines.
    """
    text = path.read_text(encoding="utf-8-sig")
    stripped = text.lstrip()
    if stripped.startswith("["):
        payload = json.loads(stripped)
        return fragments_from_records(payload)

    records: list[Any] = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON on line {line_no} of {path}: {exc}") from exc
    return fragments_from_records(records)
