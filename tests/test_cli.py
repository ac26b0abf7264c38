"""Tests for the command-line interface (dry-run only, no API calls)."""

import json

from typer.testing import CliRunner

from batch_agent.cli import EXIT_FATAL, app

runner = CliRunner()


def test_dry_run_batch(write_input, tmp_path):
    path = write_input("prompts.txt", ["Hello", "# comment", "World"])
    output = tmp_path / "out.json"

    result = runner.invoke(app, ["batch", "-i", str(path), "-o", str(output), "--dry-run"])

    assert result.exit_code == 0
    assert "=== Batch Processing Summary ===" in result.stdout
    assert "Succeeded:  2" in result.stdout
    data = json.loads(output.read_text(encoding="utf-8"))
    assert [item["item_id"] for item in data["items"]] == ["line-1", "line-3"]


def test_dry_run_with_tier(write_input):
    path = write_input("prompts.txt", ["Hello"])

    result = runner.invoke(app, ["batch", "-i", str(path), "--tier", "3", "-c", "5", "--dry-run"])

    assert result.exit_code == 0
    assert "Tier 3" in result.stdout
    assert "Concurrency: 5" in result.stdout


def test_missing_input_file(tmp_path):
    result = runner.invoke(app, ["batch", "-i", str(tmp_path / "nope.txt"), "--dry-run"])

    assert result.exit_code == EXIT_FATAL


def test_unknown_tier(write_input):
    path = write_input("prompts.txt", ["Hello"])

    result = runner.invoke(app, ["batch", "-i", str(path), "--tier", "9", "--dry-run"])

    assert result.exit_code == EXIT_FATAL


def test_model_required_without_dry_run(write_input):
    path = write_input("prompts.txt", ["Hello"])

    result = runner.invoke(app, ["batch", "-i", str(path)])

    assert result.exit_code == EXIT_FATAL


def test_tiers_command():
    result = runner.invoke(app, ["tiers"])

    assert result.exit_code == 0
    assert "Tier 3: 200 concurrent, 5,000 RPM, 3,000,000 TPM" in result.stdout
    assert "Tier 5: 1000 concurrent, 10,000 RPM, 5,000,000 TPM" in result.stdout
