# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Tiered allow-list evaluation over hash, content and regex rules."""

import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path

from osd.config import RunRules, WhitelistPaths
from osd.content import content_hash, read_script_text
from osd.model import NO_MATCH, RuleKind, WhitelistMatch, WhitelistRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleTable:
    """Represent one immutable snapshot of persistent allow-list rules.

    Attributes:
        hashes: Hash rules; known-good scripts first, then the hash rule file.
        contents: Substring rules.
        regexes: Regex rules paired with their compiled pattern.
    """

    hashes: tuple[WhitelistRule, ...] = ()
    contents: tuple[WhitelistRule, ...] = ()
    regexes: tuple[tuple[WhitelistRule, re.Pattern[str]], ...] = ()
    _hash_index: dict[str, WhitelistRule] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        for rule in self.hashes:
            self._hash_index.setdefault(rule.value, rule)

    def find_hash(self, value: str) -> WhitelistRule | None:
        return self._hash_index.get(value)

    @property
    def rule_count(self) -> int:
        return len(self.hashes) + len(self.contents) + len(self.regexes)


EMPTY_TABLE = RuleTable()


def load_rule_table(paths: WhitelistPaths) -> RuleTable:
    """Build a rule table from every configured backing store.

    Unreadable stores and malformed lines are logged and skipped so the
    evaluator keeps working with the rules that did load.

    Args:
        paths: Persistent rule locations.

    Returns:
        Freshly built rule table.
    """
    hashes: list[WhitelistRule] = []
    if paths.scripts_dir is not None:
        hashes.extend(_scan_known_good_scripts(paths.scripts_dir))
    if paths.hash_rules is not None:
        hashes.extend(
            WhitelistRule(
                kind=rule.kind, name=rule.name, value=rule.value.strip().upper()
            )
            for rule in _read_rule_file(paths.hash_rules, kind="hash")
        )

    contents: list[WhitelistRule] = []
    if paths.content_rules is not None:
        contents.extend(_read_rule_file(paths.content_rules, kind="content"))

    regexes: list[tuple[WhitelistRule, re.Pattern[str]]] = []
    if paths.regex_rules is not None:
        for rule in _read_rule_file(paths.regex_rules, kind="regex"):
            try:
                regexes.append((rule, re.compile(rule.value)))
            except re.error as exc:
                logger.warning(
                    f"Skipping invalid whitelist regex (path={paths.regex_rules} "
                    f"name={rule.name} error={exc})"
                )

    return RuleTable(
        hashes=tuple(hashes), contents=tuple(contents), regexes=tuple(regexes)
    )


def _scan_known_good_scripts(scripts_dir: Path) -> list[WhitelistRule]:
    """Hash every file beneath the known-good script directory."""
    if not scripts_dir.exists():
        logger.info(f"Known-good script directory is missing (path={scripts_dir})")
        return []
    try:
        candidates = sorted(path for path in scripts_dir.rglob("*") if path.is_file())
    except OSError as exc:
        logger.warning(
            f"Failed to list known-good script directory (path={scripts_dir} error={exc})"
        )
        return []

    rules: list[WhitelistRule] = []
    for path in candidates:
        try:
            text = read_script_text(path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(f"Skipping unreadable known-good script (path={path} error={exc})")
            continue
        rules.append(
            WhitelistRule(
                kind="hash",
                name=str(path.relative_to(scripts_dir)),
                value=content_hash(text),
            )
        )
    return rules


def _read_rule_file(path: Path, kind: RuleKind) -> list[WhitelistRule]:
    """Read a ``name,value`` rule file.

    Blank lines and lines starting with ``#`` are ignored. Only the first comma
    separates name from value, so values may contain commas.
    """
    if not path.exists():
        logger.info(f"Whitelist rule file is missing (path={path} kind={kind})")
        return []
    try:
        lines = path.read_text(encoding="utf-8-sig").splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning(f"Failed to read whitelist rule file (path={path} error={exc})")
        return []

    rules: list[WhitelistRule] = []
    for line_no, line in enumerate(lines, start=1):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        name, separator, value = line.partition(",")
        name = name.strip()
        if not separator or not name or not value:
            logger.warning(
                f"Skipping malformed whitelist rule (path={path} line={line_no})"
            )
            continue
        rules.append(WhitelistRule(kind=kind, name=name, value=value))
    return rules


class WhitelistEvaluator:
    """Decide whether content bypasses classification."""

    def __init__(self, paths: WhitelistPaths | None = None) -> None:
        """Initialize evaluator and load the persistent rules.

        Args:
            paths: Persistent rule locations; ``None`` starts with no rules.
        """
        self._paths = paths or WhitelistPaths()
        self._lock = threading.Lock()
        self._table = EMPTY_TABLE
        self.reload()

    @property
    def paths(self) -> WhitelistPaths:
        return self._paths

    @property
    def table(self) -> RuleTable:
        """Return the current rule table snapshot."""
        return self._table

    def reload(self) -> RuleTable:
        """Rebuild the persistent rule table and swap it in.

        Returns:
            The newly installed table.
        """
        with self._lock:
            table = load_rule_table(self._paths)
            self._table = table
        logger.info(
            f"Whitelist loaded (hashes={len(table.hashes)} contents={len(table.contents)} "
            f"regexes={len(table.regexes)})"
        )
        return table

    def evaluate(
        self,
        content: str,
        content_hash_value: str,
        run_rules: RunRules | None = None,
    ) -> WhitelistMatch:
        """Evaluate content against the hash, content and regex tiers in order.

        Args:
            content: Script text.
            content_hash_value: Hash of ``content``.
            run_rules: Rules for the current run only.

        Returns:
            The first matching rule, or a non-match.
        """
        table = self._table
        run_rules = run_rules or RunRules()

        normalized_hash = content_hash_value.upper()
        hash_rule = table.find_hash(normalized_hash)
        if hash_rule is not None:
            return WhitelistMatch.from_rule(hash_rule)
        for rule in run_rules.hashes:
            if rule.value == normalized_hash:
                return WhitelistMatch.from_rule(rule)

        for rule in (*table.contents, *run_rules.contents):
            if rule.value in content:
                return WhitelistMatch.from_rule(rule)

        for rule, pattern in table.regexes:
            if pattern.search(content):
                return WhitelistMatch.from_rule(rule)
        for rule, pattern in run_rules.regexes:
            if pattern.search(content):
                return WhitelistMatch.from_rule(rule)

        return NO_MATCH


class WhitelistPoller:
    """Reload an evaluator when its backing files change."""

    def __init__(self, evaluator: WhitelistEvaluator) -> None:
        self._evaluator = evaluator
        self._signature = self._current_signature()

    def poll(self) -> bool:
        """Reload the evaluator if any backing store changed since the last poll.

        Returns:
            ``True`` when a reload happened.
        """
        signature = self._current_signature()
        if signature == self._signature:
            return False
        self._signature = signature
        logger.info("Whitelist backing store changed; reloading")
        self._evaluator.reload()
        return True

    def _current_signature(self) -> tuple[tuple[str, int, int], ...]:
        entries: list[tuple[str, int, int]] = []
        for root in self._evaluator.paths.watched_paths():
            targets = [root]
            if root.is_dir():
                targets.extend(sorted(root.rglob("*")))
            for target in targets:
                try:
                    stat = target.stat()
                except OSError:
                    continue
                entries.append((str(target), stat.st_mtime_ns, stat.st_size))
        return tuple(entries)
