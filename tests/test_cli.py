"""Tests for aimo CLI commands."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from aimo.cli import main
from aimo.db.database import Database
from aimo.storage import StorageContext


@pytest.fixture
def cli_env(config, embedder, vectors):
    """Patch storage construction; the vector store is shared across invocations."""

    def build(_config):
        return StorageContext(config, Database(config.database_url), vectors, embedder)

    with patch("aimo.cli.build_storage", side_effect=build):
        yield vectors


def test_migrate_run_then_status_and_validate(cli_env) -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["migrate", "validate"])
    assert result.exit_code == 1
    assert "memo_vectors: current v0, target v3" in result.output

    result = runner.invoke(main, ["migrate", "run"])
    assert result.exit_code == 0, result.output
    assert "applied v1, v2, v3" in result.output

    result = runner.invoke(main, ["migrate", "status"])
    assert result.exit_code == 0, result.output
    assert "memo_vectors" in result.output

    result = runner.invoke(main, ["migrate", "validate"])
    assert result.exit_code == 0, result.output
    assert "All tables at latest version" in result.output


def test_migrate_dry_run_applies_nothing(cli_env) -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["migrate", "run", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "would apply v1, v2, v3" in result.output
    assert cli_env.states == {}
    assert cli_env.executed == []


def test_migrate_failure_exits_non_zero(cli_env) -> None:
    cli_env.fail_on.add("execute")
    runner = CliRunner()

    result = runner.invoke(main, ["migrate", "run"])

    assert result.exit_code == 1
    assert "Migration Error" in result.output


def test_reconcile_reports_counts(cli_env) -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["reconcile", "--dry-run", "--batch-size", "10"])

    assert result.exit_code == 0, result.output
    assert "Reconciliation (dry run)" in result.output
    assert "scanned" in result.output


def test_health(cli_env) -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["health"])
    assert result.exit_code == 0, result.output
    assert "relational: healthy" in result.output
    assert "vector: healthy" in result.output

    cli_env.fail_on.add("health")
    result = runner.invoke(main, ["health"])
    assert result.exit_code == 1
    assert "vector: unreachable" in result.output


def test_missing_configuration() -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["health"])

    assert result.exit_code == 1
    assert "AIMO_DATABASE_URL" in result.output
