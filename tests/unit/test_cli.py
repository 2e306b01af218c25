"""Tests for the KPI CLI commands."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
import yaml
from click.testing import CliRunner

from src.db.models import AutomationStatus, ConfigChangeKind, Rating
from src.kpi.cli import cli
from src.schemas.configuration import ActiveConfiguration
from src.services.configuration_defaults import default_document
from src.services.errors import ConfigurationError, DuplicateKPIScoreError
from src.services.trigger_orchestrator import (
    ActionKind,
    ActionOutcome,
    ActionResult,
    AutomationResult,
    SkipReason,
)

pytestmark = pytest.mark.tier1

KPI_ID = uuid4()
USER_ID = uuid4()


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def inputs_file(tmp_path: Path, scenario_b: dict) -> Path:
    path = tmp_path / "inputs.yaml"
    path.write_text(yaml.safe_dump(scenario_b))
    return path


def _completed() -> AutomationResult:
    return AutomationResult(
        kpi_score_id=KPI_ID,
        status=AutomationStatus.PARTIALLY_FAILED,
        actions=(
            ActionResult(ActionKind.TRAINING, "basic", ActionOutcome.CREATED),
            ActionResult(ActionKind.EMAIL, "kpi_notification", ActionOutcome.FAILED, error="relay down"),
        ),
        config_version=1,
    )


class TestSubmitCommand:
    def test_submit_and_process(self, runner: CliRunner, inputs_file: Path) -> None:
        kpi_score = MagicMock(id=KPI_ID, overall_score=45.0, rating=Rating.BELOW_AVERAGE)
        with (
            patch("src.kpi.cli.KPIService") as service_cls,
            patch("src.kpi.cli.TriggerOrchestrator") as orchestrator_cls,
        ):
            service_cls.return_value.submit = AsyncMock(return_value=kpi_score)
            orchestrator_cls.return_value.process = AsyncMock(return_value=_completed())

            result = runner.invoke(cli, ["submit", str(USER_ID), "2024-06", "--inputs", str(inputs_file)])

        assert result.exit_code == 0
        assert "45.00 (below_average)" in result.output
        assert "partially_failed" in result.output
        assert "[relay down]" in result.output
        submitted_inputs = service_cls.return_value.submit.call_args.args[2]
        assert submitted_inputs["insufficiency"] == 3

    def test_submit_no_process(self, runner: CliRunner, inputs_file: Path) -> None:
        kpi_score = MagicMock(id=KPI_ID, overall_score=96.55, rating=Rating.EXCELLENT)
        with (
            patch("src.kpi.cli.KPIService") as service_cls,
            patch("src.kpi.cli.TriggerOrchestrator") as orchestrator_cls,
        ):
            service_cls.return_value.submit = AsyncMock(return_value=kpi_score)

            result = runner.invoke(
                cli, ["submit", str(USER_ID), "2024-06", "--inputs", str(inputs_file), "--no-process"]
            )

        assert result.exit_code == 0
        orchestrator_cls.assert_not_called()

    def test_submit_domain_error(self, runner: CliRunner, inputs_file: Path) -> None:
        with patch("src.kpi.cli.KPIService") as service_cls:
            service_cls.return_value.submit = AsyncMock(side_effect=DuplicateKPIScoreError(USER_ID, "2024-06"))

            result = runner.invoke(cli, ["submit", str(USER_ID), "2024-06", "--inputs", str(inputs_file)])

        assert result.exit_code == 1
        assert "Error: KPI score already exists" in result.output


class TestProcessCommands:
    def test_process_options(self, runner: CliRunner) -> None:
        with patch("src.kpi.cli.TriggerOrchestrator") as orchestrator_cls:
            process = orchestrator_cls.return_value.process = AsyncMock(return_value=_completed())

            result = runner.invoke(cli, ["process", str(KPI_ID), "--reprocess", "--no-email"])

        assert result.exit_code == 0
        options = process.call_args.args[1]
        assert options.reprocess is True
        assert options.send_email is False

    def test_process_skip(self, runner: CliRunner) -> None:
        skipped = AutomationResult(
            kpi_score_id=KPI_ID, status=AutomationStatus.COMPLETED, skipped=SkipReason.ALREADY_COMPLETED
        )
        with patch("src.kpi.cli.TriggerOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.process = AsyncMock(return_value=skipped)

            result = runner.invoke(cli, ["process", str(KPI_ID)])

        assert "skipped (already_completed)" in result.output

    def test_process_pending_empty(self, runner: CliRunner) -> None:
        with patch("src.kpi.cli.TriggerOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.process_pending = AsyncMock(return_value=[])

            result = runner.invoke(cli, ["process-pending", "--limit", "5"])

        assert result.exit_code == 0
        assert "No pending KPI scores" in result.output
        orchestrator_cls.return_value.process_pending.assert_awaited_once()

    def test_stats(self, runner: CliRunner) -> None:
        with patch("src.kpi.cli.KPIService") as service_cls:
            service_cls.return_value.automation_stats = AsyncMock(return_value={"pending": 2, "total": 2})

            result = runner.invoke(cli, ["stats"])

        assert "pending" in result.output
        assert "total" in result.output


class TestConfigCommands:
    def _active(self, version: int = 1) -> ActiveConfiguration:
        return ActiveConfiguration(version=version, document=default_document(), change_kind=ConfigChangeKind.SEED)

    def test_show_yaml(self, runner: CliRunner) -> None:
        with patch("src.kpi.cli.ConfigurationStore") as store_cls:
            store_cls.return_value.get_active = AsyncMock(return_value=self._active())

            result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert "# version 1 (seed)" in result.output
        assert "major_negativity" in result.output

    def test_show_missing_version(self, runner: CliRunner) -> None:
        with patch("src.kpi.cli.ConfigurationStore") as store_cls:
            store_cls.return_value.get_version = AsyncMock(side_effect=ConfigurationError("version 9 not found"))

            result = runner.invoke(cli, ["config", "show", "--version", "9"])

        assert result.exit_code == 1
        assert "version 9 not found" in result.output

    def test_load(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "kpi.yaml"
        path.write_text(yaml.safe_dump(default_document().model_dump(mode="json")))
        with patch("src.kpi.cli.ConfigurationStore") as store_cls:
            store_cls.return_value.import_document = AsyncMock(return_value=self._active(version=4))

            result = runner.invoke(cli, ["config", "load", str(path)])

        assert result.exit_code == 0
        assert "Configuration version 4 is now active" in result.output

    def test_load_rejects_non_mapping(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "kpi.yaml"
        path.write_text("- just\n- a list\n")

        result = runner.invoke(cli, ["config", "load", str(path)])

        assert result.exit_code == 1
        assert "does not contain a configuration mapping" in result.output
