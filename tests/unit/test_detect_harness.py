# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Unit tests for the detection CLI harness."""

import io
import json
import re
from pathlib import Path

from cli.detect_harness import run
from osd.content import content_hash
from osd.features import CheckFeatureExtractor


def _write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _strip_ansi(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


def _write_model(models_dir: Path, bias: float, name: str = "default") -> None:
    feature_count = len(CheckFeatureExtractor().feature_names)
    weights = [str(bias)] + ["0.0"] * feature_count
    _write_file(models_dir / f"{name}.txt", ",".join(weights) + "\n")


def _record(script_id: str, number: int, total: int, text: str) -> dict[str, object]:
    return {
        "ScriptBlockId": script_id,
        "MessageNumber": number,
        "MessageTotal": total,
        "ScriptBlockText": text,
    }


def _write_fragments(path: Path) -> None:
    records = [
        _record("s1", 2, 2, "'hi'"),
        _record("s1", 1, 2, "Write-Host "),
        _record("s1", 1, 2, "Write-Host "),
        _record("s2", 1, 1, "prompt"),
    ]
    _write_file(path, "\n".join(json.dumps(record) for record in records))


def test_cli_001_requires_a_command() -> None:
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run([], stdout=stdout, stderr=stderr)

    assert exit_code == 2


def test_cli_002_reassemble_outputs_json(tmp_path: Path) -> None:
    fragments_path = tmp_path / "events.jsonl"
    _write_fragments(fragments_path)
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        ["reassemble", "--fragments", str(fragments_path), "--format", "json"],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    payload = json.loads(_strip_ansi(stdout.getvalue()))
    assert [script["script_id"] for script in payload["scripts"]] == ["s1"]
    assert payload["scripts"][0]["text"] == "Write-Host 'hi'"
    assert payload["scripts"][0]["reassembled"] is True


def test_cli_003_reassemble_deep_keeps_boilerplate_in_table(
    tmp_path: Path, monkeypatch
) -> None:
    monkeypatch.setenv("COLUMNS", "200")
    fragments_path = tmp_path / "events.jsonl"
    _write_fragments(fragments_path)
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        ["reassemble", "--fragments", str(fragments_path), "--deep"],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    compact_text = re.sub(r"[^a-zA-Z0-9_:.()'-]+", "", _strip_ansi(stdout.getvalue()))
    assert "s2" in compact_text
    assert "prompt" in compact_text


def test_cli_004_reassemble_fails_for_missing_file(tmp_path: Path) -> None:
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        ["reassemble", "--fragments", str(tmp_path / "missing.jsonl")],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 2
    assert "Path does not exist" in stderr.getvalue()


def test_cli_005_detect_text_writes_json_output_file(tmp_path: Path) -> None:
    models_dir = tmp_path / "models"
    _write_model(models_dir, bias=-1.0)
    output_path = tmp_path / "out" / "result.json"
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        [
            "detect",
            "--text",
            "Write-Host 'hello'",
            "--models-dir",
            str(models_dir),
            "--format",
            "json",
            "--output",
            str(output_path),
        ],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    assert stdout.getvalue() == ""
    payload = json.loads(output_path.read_text(encoding="utf-8"))
    result = payload["results"][0]
    assert result["source"] == "text"
    assert result["hash"] == content_hash("Write-Host 'hello'")
    assert result["obfuscated"] is False
    assert 0.0 < result["obfuscated_score"] < 0.5


def test_cli_006_detect_directory_stores_obfuscated_scripts(tmp_path: Path) -> None:
    models_dir = tmp_path / "models"
    _write_model(models_dir, bias=3.0)
    scripts_dir = tmp_path / "scripts"
    _write_file(scripts_dir / "a.ps1", "Get-Date")
    _write_file(scripts_dir / "b.ps1", "Get-Item")
    results_dir = tmp_path / "Results"
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        [
            "detect",
            "--directory",
            str(scripts_dir),
            "--models-dir",
            str(models_dir),
            "--results-dir",
            str(results_dir),
            "--whitelist-content",
            "Get-Item",
            "--workers",
            "2",
            "--format",
            "json",
        ],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    payload = json.loads(_strip_ansi(stdout.getvalue()))
    by_name = {Path(result["source"]).name: result for result in payload["results"]}
    assert by_name["a.ps1"]["obfuscated"] is True
    assert by_name["b.ps1"]["whitelisted"] is True
    assert by_name["b.ps1"]["whitelist_detail"]["kind"] == "content"
    assert sorted(path.name for path in results_dir.iterdir()) == [
        f"{content_hash('Get-Date')}.ps1"
    ]


def test_cli_007_detect_fragments_uses_whitelist_root(tmp_path: Path) -> None:
    models_dir = tmp_path / "models"
    _write_model(models_dir, bias=3.0)
    fragments_path = tmp_path / "events.jsonl"
    _write_fragments(fragments_path)
    whitelist_root = tmp_path / "Whitelist"
    _write_file(
        whitelist_root / "Scripts_To_Whitelist" / "greeting.ps1", "Write-Host 'hi'"
    )
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        [
            "detect",
            "--fragments",
            str(fragments_path),
            "--models-dir",
            str(models_dir),
            "--whitelist-root",
            str(whitelist_root),
            "--format",
            "json",
        ],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    payload = json.loads(_strip_ansi(stdout.getvalue()))
    assert len(payload["results"]) == 1
    assert payload["results"][0]["source"] == "scriptblock:s1"
    assert payload["results"][0]["whitelisted"] is True
    assert payload["results"][0]["obfuscated_score"] == 0.0


def test_cli_008_detect_reports_model_length_mismatch(tmp_path: Path) -> None:
    models_dir = tmp_path / "models"
    _write_file(models_dir / "default.txt", "0.1, 0.2, 0.3\n")
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        ["detect", "--text", "Get-Date", "--models-dir", str(models_dir)],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 3
    assert "Configuration error" in stderr.getvalue()


def test_cli_009_detect_reports_missing_model_variant(tmp_path: Path) -> None:
    models_dir = tmp_path / "models"
    _write_model(models_dir, bias=0.0)
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        [
            "detect",
            "--text",
            "Get-Date",
            "--models-dir",
            str(models_dir),
            "--model",
            "command_line",
        ],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 3


def test_cli_010_detect_rejects_invalid_run_regex(tmp_path: Path) -> None:
    models_dir = tmp_path / "models"
    _write_model(models_dir, bias=0.0)
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        [
            "detect",
            "--text",
            "Get-Date",
            "--models-dir",
            str(models_dir),
            "--whitelist-regex",
            "([a-z",
        ],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 2
    assert "Invalid whitelist regex" in stderr.getvalue()


def test_cli_011_detect_unreadable_file_is_reported_not_fatal(tmp_path: Path) -> None:
    models_dir = tmp_path / "models"
    _write_model(models_dir, bias=0.0)
    script = tmp_path / "binary.ps1"
    script.write_bytes(b"\xff\xfe\x00\x81")
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        [
            "detect",
            "--file",
            str(script),
            "--models-dir",
            str(models_dir),
            "--format",
            "json",
        ],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    payload = json.loads(_strip_ansi(stdout.getvalue()))
    assert payload["results"] == []
    assert payload["errors"][0]["source"] == str(script)
    assert "source_error" in stderr.getvalue()


def test_cli_012_detect_table_output_lists_sources(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("COLUMNS", "200")
    models_dir = tmp_path / "models"
    _write_model(models_dir, bias=-2.0)
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        ["detect", "--text", "Get-Date", "--models-dir", str(models_dir)],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    compact_text = re.sub(r"[^a-zA-Z0-9_:.()-]+", "", _strip_ansi(stdout.getvalue()))
    assert "obfuscated" in compact_text
    assert "text" in compact_text


def test_cli_013_detect_rejects_deep_without_fragments(tmp_path: Path) -> None:
    models_dir = tmp_path / "models"
    _write_model(models_dir, bias=0.0)
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        ["detect", "--text", "Get-Date", "--models-dir", str(models_dir), "--deep"],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 2
    assert "--deep requires --fragments" in stderr.getvalue()


def test_cli_014_detect_ignores_malformed_unselected_model(tmp_path: Path) -> None:
    models_dir = tmp_path / "models"
    _write_model(models_dir, bias=-1.0)
    _write_file(models_dir / "deep.txt", "not-a-weight\n")
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        [
            "detect",
            "--text",
            "Get-Date",
            "--models-dir",
            str(models_dir),
            "--format",
            "json",
        ],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    payload = json.loads(_strip_ansi(stdout.getvalue()))
    assert payload["results"][0]["obfuscated"] is False
