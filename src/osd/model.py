# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Domain models for detection artifacts."""

from dataclasses import dataclass
from typing import Literal

RuleKind = Literal["hash", "content", "regex"]


@dataclass(frozen=True)
class LogFragment:
    """Represent one reported chunk of a logged script.

    Attributes:
        script_id: Identifier shared by all chunks of one script.
        sequence_number: Position of this chunk within the script.
        chunk_total: Number of chunks the producer declared for the script.
        payload: Chunk text.
        timestamp: Event time as reported by the log source.
        level: Event level as reported by the log source.
        host: Reporting host name, when known.
        instance: Process or runspace instance, when known.
    """

    script_id: str
    sequence_number: int
    chunk_total: int
    payload: str
    timestamp: str
    level: str
    host: str | None = None
    instance: str | None = None


@dataclass(frozen=True)
class ReassembledScript:
    """Represent one script rebuilt from its fragments.

    Attributes:
        script_id: Identifier shared by the source fragments.
        text: Concatenated fragment payloads in sequence order.
        hash: SHA-256 of ``text``.
        chunk_observed_count: Number of distinct chunks observed.
        chunk_total_declared: Number of chunks the producer declared.
        reassembled: ``True`` iff every declared chunk was observed.
        first_timestamp: Earliest timestamp across the fragments.
        level: Level of the lowest-sequence fragment.
        host: Host of the lowest-sequence fragment.
        instance: Instance of the lowest-sequence fragment.
    """

    script_id: str
    text: str
    hash: str
    chunk_observed_count: int
    chunk_total_declared: int
    reassembled: bool
    first_timestamp: str
    level: str
    host: str | None = None
    instance: str | None = None


@dataclass(frozen=True)
class WhitelistRule:
    """Represent one allow-list rule."""

    kind: RuleKind
    name: str
    value: str


@dataclass(frozen=True)
class WhitelistMatch:
    """Represent the allow-list decision for one item.

    Attributes:
        match: Whether any rule matched.
        kind: Tier of the matching rule.
        name: Name of the matching rule.
        value: Value of the matching rule.
    """

    match: bool
    kind: RuleKind | None = None
    name: str | None = None
    value: str | None = None

    @classmethod
    def from_rule(cls, rule: WhitelistRule) -> "WhitelistMatch":
        return cls(match=True, kind=rule.kind, name=rule.name, value=rule.value)


NO_MATCH = WhitelistMatch(match=False)


@dataclass(frozen=True)
class InputItem:
    """Represent one normalized pipeline input.

    Attributes:
        source: Provenance label such as a file path, URL or ``scriptblock:<id>``.
        content: Script text to analyze.
    """

    source: str
    content: str


@dataclass(frozen=True)
class AnalysisResult:
    """Represent the detection outcome for one input item.

    Attributes:
        content: Analyzed script text.
        hash: SHA-256 of ``content``.
        source: Provenance label of the input item.
        whitelisted: Whether an allow-list rule short-circuited classification.
        whitelist_detail: Matching rule, or ``None`` when not whitelisted.
        obfuscated: Classifier verdict.
        obfuscated_score: Classifier score; ``None`` when the item failed.
        extraction_duration: Feature extraction time in seconds.
        classification_duration: Scoring time in seconds.
        result_location: Persisted content path, or empty string.
        error: Extraction error detail for failed items.
        persistence_error: Non-fatal error raised while storing the content.
    """

    content: str
    hash: str
    source: str
    whitelisted: bool
    whitelist_detail: WhitelistMatch | None
    obfuscated: bool
    obfuscated_score: float | None
    extraction_duration: float
    classification_duration: float
    result_location: str
    error: str | None = None
    persistence_error: str | None = None
