"""Tests for the recruitment operator CLI."""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from recruitment.cli import app


@pytest.fixture
def cli_runner():
    return CliRunner()


def _cycle(**overrides):
    values = dict(
        slug="fall-2025",
        name="Fall 2025",
        portal_open_at=datetime(2025, 9, 1, tzinfo=timezone.utc),
        application_due_at=datetime(2025, 9, 15, tzinfo=timezone.utc),
        portal_close_at=datetime(2025, 10, 15, tzinfo=timezone.utc),
        is_active=True,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestCyclesList:
    def test_lists_cycles(self, cli_runner):
        with patch("recruitment.cli._list_cycles", AsyncMock(return_value=[_cycle()])):
            result = cli_runner.invoke(app, ["cycles", "list"])

        assert result.exit_code == 0
        assert "Recruitment Cycles" in result.output
        assert "fall-2025" in result.output

    def test_empty(self, cli_runner):
        with patch("recruitment.cli._list_cycles", AsyncMock(return_value=[])):
            result = cli_runner.invoke(app, ["cycles", "list"])

        assert result.exit_code == 0
        assert "No cycles yet" in result.output


class TestCyclesRankings:
    def test_shows_latest_generation(self, cli_runner):
        generation = SimpleNamespace(
            version=2,
            entries=[
                SimpleNamespace(rank=1, applicant_email="a@x.org", track="business",
                                track_rank=1, aggregate_score=8.5, review_count=2),
                SimpleNamespace(rank=2, applicant_email="b@x.org", track="business",
                                track_rank=2, aggregate_score=None, review_count=0),
            ],
        )
        latest = AsyncMock(return_value=generation)
        cycle_id = uuid.uuid4()
        with patch("recruitment.cli._latest_ranking", latest):
            result = cli_runner.invoke(app, ["cycles", "rankings", str(cycle_id)])

        assert result.exit_code == 0
        assert "v2" in result.output
        assert "8.50" in result.output
        assert "b@x.org" in result.output
        latest.assert_called_once_with(cycle_id, "application")

    def test_missing_ranking_exits_nonzero(self, cli_runner):
        with patch("recruitment.cli._latest_ranking", AsyncMock(return_value=None)):
            result = cli_runner.invoke(
                app, ["cycles", "rankings", str(uuid.uuid4()), "--phase", "interview_round1"]
            )

        assert result.exit_code == 1
        assert "No rankings generated" in result.output


class TestOutboxFlush:
    def test_flush_stops_when_queue_drains(self, cli_runner):
        worker = MagicMock()
        worker.run_once = AsyncMock(side_effect=[True, True, False])
        with patch("recruitment.worker.NotificationWorker", return_value=worker):
            result = cli_runner.invoke(app, ["outbox", "flush"])

        assert result.exit_code == 0
        assert "Attempted 2 notification(s)" in result.output

    def test_flush_respects_limit(self, cli_runner):
        worker = MagicMock()
        worker.run_once = AsyncMock(return_value=True)
        with patch("recruitment.worker.NotificationWorker", return_value=worker):
            result = cli_runner.invoke(app, ["outbox", "flush", "--limit", "3"])

        assert result.exit_code == 0
        assert worker.run_once.await_count == 3


class TestDbCommands:
    def test_upgrade_defaults_to_head(self, cli_runner):
        with patch("alembic.command.upgrade") as upgrade:
            result = cli_runner.invoke(app, ["db", "upgrade"])

        assert result.exit_code == 0
        config, revision = upgrade.call_args.args
        assert revision == "head"
        assert config.config_file_name.endswith("alembic.ini")
