# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""CLI harness for fragment reassembly and obfuscation detection."""

import argparse
import json
import logging
import sys
from collections.abc import Callable
from dataclasses import asdict
from pathlib import Path
from typing import Any, TextIO

from rich.console import Console
from rich.logging import RichHandler
from rich.style import Style
from rich.table import Table

from osd.classifier import (
    MODEL_SELECTORS,
    ConfigurationError,
    ObfuscationClassifier,
    load_models,
)
from osd.config import InvalidRuleError, PipelineConfig, RunRules, WhitelistPaths
from osd.features import CheckFeatureExtractor
from osd.fragment_source import FragmentRecordError, read_fragment_file
from osd.model import AnalysisResult, InputItem, ReassembledScript
from osd.pipeline import DetectionPipeline
from osd.reassembler import FragmentReassembler
from osd.sources import (
    DEFAULT_INCLUDE_PATTERNS,
    SourceError,
    SourceFailure,
    collect_directory,
    fetch_url,
    from_reassembled,
    from_text,
    read_file,
)
from osd.whitelist import WhitelistEvaluator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_CONFIGURATION = 3

TABLE_COLUMN_RATIOS: dict[str, int] = {
    "source": 3,
    "hash": 3,
    "whitelisted": 1,
    "obfuscated": 1,
    "score": 1,
    "detail": 2,
}

SCRIPT_COLUMN_RATIOS: dict[str, int] = {
    "script_id": 3,
    "chunks": 1,
    "reassembled": 1,
    "first_timestamp": 2,
    "hash": 3,
    "text": 5,
}


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging with Rich handler.

    Args:
        level: Logging severity threshold.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser instance.
    """
    parser = argparse.ArgumentParser(prog="osd")
    subparsers = parser.add_subparsers(dest="command", required=True)

    reassemble_parser = subparsers.add_parser("reassemble")
    reassemble_parser.add_argument(
        "--fragments", required=True, help="JSON or JSON-lines log record file."
    )
    reassemble_parser.add_argument(
        "--deep",
        action="store_true",
        help="Keep boilerplate, duplicate and partial script blocks.",
    )
    _add_output_arguments(reassemble_parser)

    detect_parser = subparsers.add_parser("detect")
    inputs = detect_parser.add_mutually_exclusive_group(required=True)
    inputs.add_argument("--text", help="Script text to analyze.")
    inputs.add_argument("--file", help="Script file to analyze.")
    inputs.add_argument("--directory", help="Directory of scripts to analyze.")
    inputs.add_argument("--url", help="URL of a script to analyze.")
    inputs.add_argument(
        "--fragments", help="Log record file to reassemble and analyze."
    )
    detect_parser.add_argument(
        "--models-dir",
        required=True,
        help="Directory holding <model>.txt weight files.",
    )
    detect_parser.add_argument(
        "--model",
        choices=MODEL_SELECTORS,
        default="default",
        help="Model variant used for classification.",
    )
    detect_parser.add_argument(
        "--whitelist-root",
        required=False,
        help="Whitelist folder with known-good scripts and rule files.",
    )
    detect_parser.add_argument(
        "--whitelist-hash",
        action="append",
        default=[],
        help="SHA-256 hash to whitelist for this run only.",
    )
    detect_parser.add_argument(
        "--whitelist-content",
        action="append",
        default=[],
        help="Substring to whitelist for this run only.",
    )
    detect_parser.add_argument(
        "--whitelist-regex",
        action="append",
        default=[],
        help="Regular expression to whitelist for this run only.",
    )
    detect_parser.add_argument(
        "--results-dir",
        required=False,
        help="Store obfuscated scripts as <hash>.ps1 in this directory.",
    )
    detect_parser.add_argument(
        "--workers", type=int, default=1, help="Number of worker threads."
    )
    detect_parser.add_argument(
        "--include",
        action="append",
        default=None,
        help="File pattern for --directory; repeatable.",
    )
    detect_parser.add_argument(
        "--deep",
        action="store_true",
        help="Keep boilerplate and duplicate script blocks; requires --fragments.",
    )
    _add_output_arguments(detect_parser)
    return parser


def _add_output_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        choices=("table", "json"),
        default="table",
        help="Output format.",
    )
    parser.add_argument(
        "--output",
        required=False,
        help="Optional output file path for raw JSON when --format json is used.",
    )


def run(argv: list[str], stdout: TextIO, stderr: TextIO) -> int:
    """Run CLI command.

    Args:
        argv: CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        logger.warning(f"Argument parsing failed (argv={argv})")
        return EXIT_USAGE
    if args.command == "reassemble":
        return _run_reassemble(args=args, stdout=stdout, stderr=stderr)
    if args.command == "detect":
        return _run_detect(args=args, stdout=stdout, stderr=stderr)

    logger.warning(f"Unsupported command (command={args.command})")
    stderr.write(f"Unsupported command: {args.command}\n")
    return EXIT_USAGE


def _run_reassemble(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run reassemble command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    scripts = _reassemble_file(Path(args.fragments), deep=args.deep, stderr=stderr)
    if scripts is None:
        return EXIT_USAGE
    logger.info(
        f"Reassembly completed (path={args.fragments} scripts={len(scripts)} deep={args.deep})"
    )
    payload = {"scripts": [asdict(script) for script in scripts]}
    return _emit(
        payload=payload,
        args=args,
        stdout=stdout,
        stderr=stderr,
        write_table=lambda console: _write_script_table(scripts, console),
    )


def _run_detect(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run detect command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    if args.workers <= 0:
        logger.warning(f"Invalid worker count (workers={args.workers})")
        stderr.write("workers must be > 0\n")
        return EXIT_USAGE
    if args.deep and not args.fragments:
        logger.warning("Deep mode requested without fragment input")
        stderr.write("--deep requires --fragments\n")
        return EXIT_USAGE
    try:
        run_rules = RunRules.from_values(
            hashes=args.whitelist_hash,
            contents=args.whitelist_content,
            regexes=args.whitelist_regex,
        )
    except InvalidRuleError as exc:
        logger.warning(f"Invalid run rule (error={exc})")
        stderr.write(f"{exc}\n")
        return EXIT_USAGE

    models_dir = Path(args.models_dir)
    if not models_dir.is_dir():
        logger.warning(f"Models directory does not exist (path={models_dir})")
        stderr.write(f"Models directory does not exist: {models_dir}\n")
        return EXIT_USAGE

    collected = _collect_inputs(args=args, stderr=stderr)
    if collected is None:
        return EXIT_USAGE
    items, failures = collected

    config = PipelineConfig(
        model_selector=args.model,
        persist_results=args.results_dir is not None,
        results_dir=Path(args.results_dir) if args.results_dir else Path("Results"),
        max_workers=args.workers,
        run_rules=run_rules,
    )
    whitelist_paths = (
        WhitelistPaths.from_root(Path(args.whitelist_root))
        if args.whitelist_root
        else WhitelistPaths()
    )
    try:
        models = load_models(models_dir, selectors=(args.model,))
        pipeline = DetectionPipeline(
            whitelist=WhitelistEvaluator(whitelist_paths),
            extractor=CheckFeatureExtractor(),
            classifier=ObfuscationClassifier(models),
            config=config,
        )
        results = pipeline.run(items)
    except ConfigurationError as exc:
        logger.warning(f"Detection aborted by configuration error (error={exc})")
        stderr.write(f"Configuration error: {exc}\n")
        return EXIT_CONFIGURATION

    logger.info(
        f"Detection completed (items={len(items)} skipped={len(failures)} "
        f"obfuscated={sum(1 for result in results if result.obfuscated)})"
    )
    _write_failures(failures=failures, stderr=stderr)
    _write_item_errors(results=results, stderr=stderr)
    payload = {
        "results": [asdict(result) for result in results],
        "errors": [asdict(failure) for failure in failures],
    }
    return _emit(
        payload=payload,
        args=args,
        stdout=stdout,
        stderr=stderr,
        write_table=lambda console: _write_result_table(results, console),
    )


def _collect_inputs(
    args: argparse.Namespace, stderr: TextIO
) -> tuple[list[InputItem], list[SourceFailure]] | None:
    """Normalize the selected input option into pipeline items.

    Returns:
        Items and skipped inputs, or ``None`` when the input is unusable.
    """
    if args.text is not None:
        return [from_text(args.text)], []
    if args.url is not None:
        try:
            return [fetch_url(args.url)], []
        except SourceError as exc:
            return [], [SourceFailure(source=args.url, message=str(exc))]
    if args.fragments is not None:
        scripts = _reassemble_file(Path(args.fragments), deep=args.deep, stderr=stderr)
        if scripts is None:
            return None
        return from_reassembled(scripts), []

    path = Path(args.file if args.file is not None else args.directory)
    if not path.exists():
        logger.warning(f"Path does not exist (path={path})")
        stderr.write(f"Path does not exist: {path}\n")
        return None
    if args.directory is not None:
        include = tuple(args.include) if args.include else DEFAULT_INCLUDE_PATTERNS
        return collect_directory(path, include=include)
    try:
        return [read_file(path)], []
    except SourceError as exc:
        return [], [SourceFailure(source=str(path), message=str(exc))]


def _reassemble_file(
    path: Path, deep: bool, stderr: TextIO
) -> list[ReassembledScript] | None:
    if not path.exists():
        logger.warning(f"Path does not exist (path={path})")
        stderr.write(f"Path does not exist: {path}\n")
        return None
    try:
        fragments, errors = read_fragment_file(path)
    except (OSError, ValueError) as exc:
        logger.warning(f"Failed to read fragment file (path={path} error={exc})")
        stderr.write(f"Failed to read fragment file: {path}\n")
        return None
    _write_record_errors(errors=errors, stderr=stderr)
    return FragmentReassembler(deep=deep).reassemble(fragments)


def _emit(
    payload: dict[str, Any],
    args: argparse.Namespace,
    stdout: TextIO,
    stderr: TextIO,
    write_table: Callable[[Console], None],
) -> int:
    if args.format == "json":
        if args.output:
            try:
                _write_json_file(payload=payload, output_path=Path(args.output))
            except OSError as exc:
                logger.warning(
                    f"Failed to write JSON output file (output_path={args.output} error={exc})"
                )
                stderr.write(f"Failed to write JSON output file: {args.output}\n")
                return EXIT_USAGE
        else:
            _write_json(payload=payload, stdout=stdout)
    else:
        console = Console(file=stdout, force_terminal=False, color_system="truecolor")
        write_table(console)
    return EXIT_OK


def _write_failures(failures: list[SourceFailure], stderr: TextIO) -> None:
    for failure in failures:
        stderr.write(f"source_error: {failure.source}: {failure.message}\n")


def _write_item_errors(results: list[AnalysisResult], stderr: TextIO) -> None:
    for result in results:
        if result.error is not None:
            stderr.write(f"extraction_error: {result.source}: {result.error}\n")
        if result.persistence_error is not None:
            stderr.write(
                f"persistence_error: {result.source}: {result.persistence_error}\n"
            )


def _write_record_errors(errors: list[FragmentRecordError], stderr: TextIO) -> None:
    for error in errors:
        stderr.write(f"record_error: {error}\n")


def _write_json(payload: dict[str, Any], stdout: TextIO) -> None:
    """Write payload in JSON format.

    Args:
        payload: JSON-serializable payload.
        stdout: Standard output stream.
    """
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    console.print(
        json.dumps(payload, indent=2, sort_keys=True),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def _write_json_file(payload: dict[str, Any], output_path: Path) -> None:
    """Write raw JSON payload to an output file.

    Args:
        payload: JSON-serializable payload.
        output_path: Target file path.

    Raises:
        OSError: If directory creation or file writing fails.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
    )


def _write_result_table(results: list[AnalysisResult], console: Console) -> None:
    console.rule("detection results", style=Style(color="cyan"), characters="-")
    table = Table(show_header=True, show_lines=True, expand=True)
    for column, ratio in TABLE_COLUMN_RATIOS.items():
        table.add_column(column, ratio=ratio, overflow="fold")
    for result in results:
        if result.whitelist_detail is not None:
            detail = f"{result.whitelist_detail.kind}:{result.whitelist_detail.name}"
        else:
            detail = result.error or result.result_location
        score = (
            "-" if result.obfuscated_score is None else f"{result.obfuscated_score:.4f}"
        )
        table.add_row(
            result.source,
            result.hash,
            str(result.whitelisted),
            str(result.obfuscated),
            score,
            detail,
        )
    console.print(table)


def _write_script_table(scripts: list[ReassembledScript], console: Console) -> None:
    console.rule("reassembled scripts", style=Style(color="cyan"), characters="-")
    table = Table(show_header=True, show_lines=True, expand=True)
    for column, ratio in SCRIPT_COLUMN_RATIOS.items():
        table.add_column(column, ratio=ratio, overflow="fold")
    for script in scripts:
        table.add_row(
            script.script_id,
            f"{script.chunk_observed_count}/{script.chunk_total_declared}",
            str(script.reassembled),
            script.first_timestamp,
            script.hash,
            script.text,
        )
    console.print(table)


def main() -> None:
    """Run the CLI application and exit."""
    configure_logging()
    exit_code = run(sys.argv[1:], stdout=sys.stdout, stderr=sys.stderr)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
