# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Reassemble chunked script-execution log fragments into scripts."""

import logging
import re
from collections.abc import Iterable
from datetime import datetime, timezone

from osd.content import content_hash
from osd.model import LogFragment, ReassembledScript

logger = logging.getLogger(__name__)

# Script blocks the PowerShell host logs on its own for prompts and error
# formatting. They carry no user content.
DEFAULT_BENIGN_SCRIPTS: frozenset[str] = frozenset(
    {
        "prompt",
        "$global:?",
        "{ Set-StrictMode -Version 1; $_.PSMessageDetails }",
        "{ Set-StrictMode -Version 1; $_.ErrorCategory_Message }",
        "{ Set-StrictMode -Version 1; $_.OriginInfo }",
        "{ Set-StrictMode -Version 1; $this.Exception.InnerException.PSMessageDetails }",
        "Set-StrictMode -Version 1; $_.PSMessageDetails",
        "Set-StrictMode -Version 1; $_.ErrorCategory_Message",
        "Set-StrictMode -Version 1; $_.OriginInfo",
        "Set-StrictMode -Version 1; $this.Exception.InnerException.PSMessageDetails",
    }
)


# Formats seen in exported event logs besides ISO-8601.
TIMESTAMP_FORMATS: tuple[str, ...] = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%d.%m.%Y %H:%M:%S",
)

_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: str) -> datetime | None:
    """Parse an event timestamp into an aware UTC datetime.

    ISO-8601 values (with ``Z`` or an offset, and fractions longer than
    microseconds) are tried first, then ``TIMESTAMP_FORMATS``. Values without
    an offset are taken as UTC.

    Returns:
        Parsed datetime, or ``None`` if no format matches.
    """
    text = value.strip()
    if not text:
        return None
    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(
            _FRACTION_PATTERN.sub(r"\1", text.replace("Z", "+00:00"))
        )
    except ValueError:
        for fmt in TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
            except ValueError:
                continue
            break
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def timestamp_sort_key(value: str) -> tuple[int, datetime, str]:
    """Order parsed timestamps chronologically ahead of unparsed raw strings."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return (1, datetime.min.replace(tzinfo=timezone.utc), value)
    return (0, parsed, value)


class FragmentReassembler:
    """Build distinct scripts from a batch of log fragments."""

    def __init__(
        self,
        deep: bool = False,
        benign_scripts: frozenset[str] = DEFAULT_BENIGN_SCRIPTS,
    ) -> None:
        """Initialize reassembler.

        Args:
            deep: Return every reconstructed group, disabling the boilerplate
                and duplicate-text filters.
            benign_scripts: Exact script texts dropped in default mode.
        """
        self._deep = deep
        self._benign_scripts = benign_scripts

    def reassemble(self, fragments: Iterable[LogFragment]) -> list[ReassembledScript]:
        """Reassemble one batch of fragments.

        Args:
            fragments: Fragments in observation order.

        Returns:
            Scripts ordered by ``(first_timestamp, script_id)``.
        """
        unique = self._deduplicate(fragments)

        by_script: dict[str, list[LogFragment]] = {}
        for fragment in unique:
            by_script.setdefault(fragment.script_id, []).append(fragment)

        scripts = [
            self._assemble(script_id, group) for script_id, group in by_script.items()
        ]
        scripts.sort(
            key=lambda script: (
                timestamp_sort_key(script.first_timestamp),
                script.script_id,
            )
        )
        if self._deep:
            return scripts
        return self._filter(scripts)

    def _deduplicate(self, fragments: Iterable[LogFragment]) -> list[LogFragment]:
        """Keep the first observed fragment per ``(script_id, sequence_number)``."""
        seen: set[tuple[str, int]] = set()
        unique: list[LogFragment] = []
        duplicates = 0
        for fragment in fragments:
            key = (fragment.script_id, fragment.sequence_number)
            if key in seen:
                duplicates += 1
                continue
            seen.add(key)
            unique.append(fragment)
        if duplicates:
            logger.debug(f"Dropped duplicate fragments (count={duplicates})")
        return unique

    def _assemble(self, script_id: str, group: list[LogFragment]) -> ReassembledScript:
        ordered = sorted(group, key=lambda fragment: fragment.sequence_number)
        declared_totals = {fragment.chunk_total for fragment in ordered}
        if len(declared_totals) > 1:
            logger.warning(
                f"Fragments disagree on declared chunk total; using the largest "
                f"(script_id={script_id} totals={sorted(declared_totals)})"
            )
        chunk_total_declared = max(declared_totals)
        text = "".join(fragment.payload for fragment in ordered)
        head = ordered[0]
        return ReassembledScript(
            script_id=script_id,
            text=text,
            hash=content_hash(text),
            chunk_observed_count=len(ordered),
            chunk_total_declared=chunk_total_declared,
            reassembled=len(ordered) == chunk_total_declared,
            first_timestamp=min(
                (fragment.timestamp for fragment in ordered), key=timestamp_sort_key
            ),
            level=head.level,
            host=head.host,
            instance=head.instance,
        )

    def _filter(self, scripts: list[ReassembledScript]) -> list[ReassembledScript]:
        """Drop boilerplate scripts and repeated script texts."""
        emitted_texts: set[str] = set()
        kept: list[ReassembledScript] = []
        for script in scripts:
            if script.text in self._benign_scripts:
                continue
            if script.text in emitted_texts:
                continue
            emitted_texts.add(script.text)
            kept.append(script)
        dropped = len(scripts) - len(kept)
        if dropped:
            logger.debug(f"Filtered reassembled scripts (dropped={dropped} kept={len(kept)})")
        return kept
