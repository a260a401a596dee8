# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Run-scoped configuration values."""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from osd.classifier import DEFAULT_SELECTOR, ModelSelector
from osd.model import RuleKind, WhitelistRule

RUN_RULE_NAME = "run_argument"


class InvalidRuleError(ValueError):
    """Represent a run-scoped allow-list rule that cannot be used."""


@dataclass(frozen=True)
class WhitelistPaths:
    """Describe the persistent allow-list backing stores.

    Attributes:
        scripts_dir: Directory of known-good scripts hashed at load time.
        hash_rules: ``name,value`` file of whitelisted SHA-256 hashes.
        content_rules: ``name,value`` file of whitelisted substrings.
        regex_rules: ``name,value`` file of whitelisted regular expressions.
    """

    scripts_dir: Path | None = None
    hash_rules: Path | None = None
    content_rules: Path | None = None
    regex_rules: Path | None = None

    @classmethod
    def from_root(cls, root: Path) -> "WhitelistPaths":
        """Build paths for the conventional whitelist folder layout."""
        return cls(
            scripts_dir=root / "Scripts_To_Whitelist",
            hash_rules=root / "Hashes_To_Whitelist.txt",
            content_rules=root / "Strings_To_Whitelist.txt",
            regex_rules=root / "Regex_To_Whitelist.txt",
        )

    def watched_paths(self) -> list[Path]:
        return [
            path
            for path in (
                self.scripts_dir,
                self.hash_rules,
                self.content_rules,
                self.regex_rules,
            )
            if path is not None
        ]


@dataclass(frozen=True)
class RunRules:
    """Allow-list rules that apply to a single pipeline run only."""

    hashes: tuple[WhitelistRule, ...] = ()
    contents: tuple[WhitelistRule, ...] = ()
    regexes: tuple[tuple[WhitelistRule, re.Pattern[str]], ...] = ()

    @classmethod
    def from_values(
        cls,
        hashes: Iterable[str] = (),
        contents: Iterable[str] = (),
        regexes: Iterable[str] = (),
    ) -> "RunRules":
        """Build run rules from plain argument values.

        Raises:
            InvalidRuleError: If a regex value does not compile.
        """
        compiled: list[tuple[WhitelistRule, re.Pattern[str]]] = []
        for rule in _rules("regex", regexes):
            try:
                compiled.append((rule, re.compile(rule.value)))
            except re.error as exc:
                raise InvalidRuleError(
                    f"Invalid whitelist regex '{rule.value}': {exc}"
                ) from exc
        return cls(
            hashes=_rules("hash", (value.strip().upper() for value in hashes)),
            contents=_rules("content", contents),
            regexes=tuple(compiled),
        )

    def is_empty(self) -> bool:
        return not (self.hashes or self.contents or self.regexes)


def _rules(kind: RuleKind, values: Iterable[str]) -> tuple[WhitelistRule, ...]:
    return tuple(
        WhitelistRule(kind=kind, name=RUN_RULE_NAME, value=value)
        for value in values
        if value
    )


@dataclass(frozen=True)
class PipelineConfig:
    """Describe one detection pipeline run.

    Attributes:
        model_selector: Model variant used for classification.
        persist_results: Store obfuscated content under ``results_dir``.
        results_dir: Directory for content-addressed result files.
        result_extension: File extension of stored results.
        max_workers: Worker threads; ``1`` processes items sequentially.
        progress_batch_size: Emit a progress log line every N items.
        run_rules: Allow-list rules scoped to this run.
    """

    model_selector: ModelSelector = DEFAULT_SELECTOR
    persist_results: bool = False
    results_dir: Path = Path("Results")
    result_extension: str = "ps1"
    max_workers: int = 1
    progress_batch_size: int = 50
    run_rules: RunRules = field(default_factory=RunRules)
