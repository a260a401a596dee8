# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Feature extraction contract and statically registered text checks."""

import logging
import math
import re
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

_PRINTABLE_ASCII: tuple[str, ...] = tuple(chr(code) for code in range(0x20, 0x7F))
_WORD_PATTERN = re.compile(r"[A-Za-z0-9_\-]+")
_CASE_HUMP_PATTERN = re.compile(r"(?<=[a-z])[A-Z]")


class FeatureExtractionError(RuntimeError):
    """Represent a failure to build a complete feature vector."""


@dataclass(frozen=True)
class FeatureVector:
    """Represent ordered named feature values.

    Attributes:
        names: Feature names in model order.
        values: Feature values aligned with ``names``.
    """

    names: tuple[str, ...]
    values: tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.names) != len(self.values):
            raise ValueError("names and values must have the same length.")

    def __len__(self) -> int:
        return len(self.values)

    def items(self) -> list[tuple[str, float]]:
        return list(zip(self.names, self.values))

    @classmethod
    def from_pairs(cls, pairs: Sequence[tuple[str, float]]) -> "FeatureVector":
        return cls(
            names=tuple(name for name, _ in pairs),
            values=tuple(float(value) for _, value in pairs),
        )


class FeatureExtractor(Protocol):
    """Define feature extraction for script text."""

    def extract(self, text: str) -> FeatureVector:
        """Extract an ordered feature vector.

        Args:
            text: Script text.

        Returns:
            Feature vector in model order.

        Raises:
            FeatureExtractionError: If any feature cannot be computed.
        """


@dataclass(frozen=True)
class Check:
    """Represent one registered check producing a fixed block of features."""

    name: str
    feature_names: tuple[str, ...]
    compute: Callable[[str], Sequence[float]]


def _character_frequency(text: str) -> list[float]:
    if not text:
        return [0.0] * len(_PRINTABLE_ASCII)
    counts = Counter(text)
    total = len(text)
    return [counts.get(char, 0) / total for char in _PRINTABLE_ASCII]


def _character_classes(text: str) -> list[float]:
    total = len(text)
    if total == 0:
        return [0.0] * 6
    upper = lower = digit = space = special = non_ascii = 0
    for char in text:
        if not char.isascii():
            non_ascii += 1
        elif char.isupper():
            upper += 1
        elif char.islower():
            lower += 1
        elif char.isdigit():
            digit += 1
        elif char.isspace():
            space += 1
        else:
            special += 1
    return [
        upper / total,
        lower / total,
        digit / total,
        space / total,
        special / total,
        non_ascii / total,
    ]


def _entropy(text: str) -> list[float]:
    if not text:
        return [0.0]
    total = len(text)
    entropy = 0.0
    for count in Counter(text).values():
        probability = count / total
        entropy -= probability * math.log2(probability)
    return [entropy]


def _line_statistics(text: str) -> list[float]:
    lines = text.splitlines() or [""]
    lengths = [len(line) for line in lines]
    return [float(len(lines)), sum(lengths) / len(lengths), float(max(lengths))]


def _word_statistics(text: str) -> list[float]:
    words = _WORD_PATTERN.findall(text)
    if not words:
        return [0.0, 0.0, 0.0, 0.0]
    lengths = [len(word) for word in words]
    # More lower-to-upper humps than CamelCase verb-noun names carry.
    mixed_case = sum(
        1 for word in words if len(_CASE_HUMP_PATTERN.findall(word)) > 2
    )
    return [
        float(len(words)),
        sum(lengths) / len(lengths),
        float(max(lengths)),
        mixed_case / len(words),
    ]


DEFAULT_CHECKS: tuple[Check, ...] = (
    Check(
        name="character_frequency",
        feature_names=tuple(f"char_freq_{ord(char):#04x}" for char in _PRINTABLE_ASCII),
        compute=_character_frequency,
    ),
    Check(
        name="character_classes",
        feature_names=(
            "ratio_upper",
            "ratio_lower",
            "ratio_digit",
            "ratio_whitespace",
            "ratio_special",
            "ratio_non_ascii",
        ),
        compute=_character_classes,
    ),
    Check(name="entropy", feature_names=("shannon_entropy",), compute=_entropy),
    Check(
        name="line_statistics",
        feature_names=("line_count", "line_length_avg", "line_length_max"),
        compute=_line_statistics,
    ),
    Check(
        name="word_statistics",
        feature_names=(
            "word_count",
            "word_length_avg",
            "word_length_max",
            "ratio_random_case_words",
        ),
        compute=_word_statistics,
    ),
)


class CheckFeatureExtractor:
    """Extract features by running an explicit, ordered list of checks."""

    def __init__(self, checks: Sequence[Check] = DEFAULT_CHECKS) -> None:
        """Initialize extractor.

        Args:
            checks: Checks in model order.

        Raises:
            ValueError: If no checks are given or check names repeat.
        """
        if not checks:
            raise ValueError("checks must not be empty")
        names = [check.name for check in checks]
        if len(set(names)) != len(names):
            raise ValueError("check names must be unique")
        self._checks = tuple(checks)

    @property
    def feature_names(self) -> tuple[str, ...]:
        return tuple(name for check in self._checks for name in check.feature_names)

    def extract(self, text: str) -> FeatureVector:
        """Run every check against the text.

        Args:
            text: Script text.

        Returns:
            Concatenated check outputs in registration order.

        Raises:
            FeatureExtractionError: If a check fails or returns the wrong number
                of values.
        """
        pairs: list[tuple[str, float]] = []
        for check in self._checks:
            try:
                values = [float(value) for value in check.compute(text)]
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Feature check failed (check={check.name} error={exc!r})")
                raise FeatureExtractionError(
                    f"Check '{check.name}' failed: {type(exc).__name__}: {exc}"
                ) from exc
            if len(values) != len(check.feature_names):
                raise FeatureExtractionError(
                    f"Check '{check.name}' produced {len(values)} values, "
                    f"expected {len(check.feature_names)}."
                )
            pairs.extend(zip(check.feature_names, values))
        return FeatureVector.from_pairs(pairs)
