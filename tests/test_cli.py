"""Tests for the techhub CLI."""

from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from techhub.cli import app

runner = CliRunner()


def test_status_prints_pending_count():
    with patch(
        "techhub.services.delivery_queue.count_pending_tasks",
        new_callable=AsyncMock,
        return_value=4,
    ):
        result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "Pending delivery tasks: 4" in result.output


def test_sweep_reports_deleted_rows():
    with patch(
        "techhub.services.retention.run_retention_sweep",
        new_callable=AsyncMock,
        return_value={"idempotency_deleted": 3, "issues_deleted": 1, "errors": []},
    ):
        result = runner.invoke(app, ["sweep"])

    assert result.exit_code == 0
    assert "Idempotency records deleted: 3" in result.output
    assert "Issues deleted: 1" in result.output


def test_sweep_exits_non_zero_on_errors():
    with patch(
        "techhub.services.retention.run_retention_sweep",
        new_callable=AsyncMock,
        return_value={"idempotency_deleted": 0, "issues_deleted": 0, "errors": ["issues: boom"]},
    ):
        result = runner.invoke(app, ["sweep"])

    assert result.exit_code == 1


def test_drain_reports_processed_tasks():
    with patch(
        "techhub.services.delivery_worker.DeliveryWorker.drain",
        new_callable=AsyncMock,
        return_value=5,
    ):
        result = runner.invoke(app, ["drain"])

    assert result.exit_code == 0
    assert "Processed 5 task(s)" in result.output
