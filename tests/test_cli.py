"""Tests for aurora-serverless CLI commands."""

import json
import re
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from aurora_serverless.cli import build_app
from aurora_serverless.cli import commands

runner = CliRunner()

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")

_CONFIG = """\
engine: {name: aurora-postgresql, version: "10.14"}
vpc:
  vpc_id: vpc-0abc
  subnets:
    - {subnet_id: subnet-a, availability_zone: us-west-2a}
    - {subnet_id: subnet-b, availability_zone: us-west-2b}
scaling: {min_capacity: 2, max_capacity: 8, auto_pause_seconds: 0}
"""

_OUTPUTS = {
    "DatabaseClusterIdentifier": "database-abc123",
    "DatabaseClusterEndpointAddress": "db.cluster-x.rds.amazonaws.com",
    "DatabaseClusterEndpointPort": "5432",
    "DatabaseClusterReadEndpointAddress": "db.cluster-ro-x.rds.amazonaws.com",
    "DatabaseSecretArn": "arn:aws:secretsmanager:us-west-2:123:secret:db",
}


def _strip(s: str) -> str:
    return _ANSI_RE.sub("", s)


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep rich from wrapping long ARNs and hostnames."""
    monkeypatch.setattr(commands, "console", Console(width=200))


@pytest.fixture()
def app():
    """Build a fresh Typer app for each test."""
    return build_app()


@pytest.fixture()
def config_file(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text(_CONFIG)
    return path


# ── helpers ──────────────────────────────────────────────────────────


def _mock_stack_manager():
    """Return a MagicMock that quacks like ServerlessStackManager."""
    mgr = MagicMock()

    def _create_stack(stack_name, document, cluster=None, callback=None):
        cluster.bind_outputs(_OUTPUTS)
        return {"stack_name": stack_name, "stack_id": "arn:stack", "outputs": _OUTPUTS}

    mgr.create_stack.side_effect = _create_stack
    mgr.initiate_create_stack.return_value = {
        "stack_name": "aurora-serverless-database",
        "stack_id": "arn:stack",
    }
    mgr.delete_stack.return_value = {
        "stack_name": "aurora-serverless-database",
        "status": "DELETE_COMPLETE",
    }
    mgr.get_stack_status.return_value = {
        "stack_name": "aurora-serverless-database",
        "status": "CREATE_COMPLETE",
        "outputs": _OUTPUTS,
        "tags": {"managed-by": "aurora-serverless"},
    }
    mgr.detect_existing_resources.return_value = {
        "aurora-serverless-database": {
            "status": "CREATE_COMPLETE",
            "outputs": _OUTPUTS,
            "tags": {"managed-by": "aurora-serverless", "cost-center": "global"},
        },
    }
    return mgr


# ── help ─────────────────────────────────────────────────────────────


class TestHelp:
    def test_lists_commands(self, app):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        out = _strip(result.output)
        for command in ("synth", "deploy", "status", "delete", "list", "engines"):
            assert command in out


# ── synth ────────────────────────────────────────────────────────────


class TestSynth:
    def test_prints_template(self, app, config_file):
        result = runner.invoke(app, ["synth", str(config_file)])
        assert result.exit_code == 0, result.output
        out = result.output
        template = json.loads(out[out.index("{") :])
        props = template["Resources"]["Database"]["Properties"]
        assert props["ScalingConfiguration"] == {
            "AutoPause": False,
            "MinCapacity": 2,
            "MaxCapacity": 8,
        }

    def test_writes_output_file(self, app, config_file, tmp_path):
        out_path = tmp_path / "template.json"
        result = runner.invoke(app, ["synth", str(config_file), "--output", str(out_path)])
        assert result.exit_code == 0, result.output
        assert "Template written" in _strip(result.output)
        assert json.loads(out_path.read_text())["Resources"]["Database"]

    def test_configuration_errors_fail(self, app, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(
            "engine: {name: aurora}\nvpc: {vpc_id: vpc-1, subnets: [{subnet_id: s}]}\n"
        )
        result = runner.invoke(app, ["synth", str(path)])
        assert result.exit_code == 1
        assert "at least 2 subnets" in _strip(result.output)

    def test_allow_errors(self, app, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(
            "engine: {name: aurora}\nvpc: {vpc_id: vpc-1, subnets: [{subnet_id: s}]}\n"
        )
        out_path = tmp_path / "template.json"
        result = runner.invoke(
            app, ["synth", str(path), "--allow-errors", "--output", str(out_path)]
        )
        assert result.exit_code == 0
        assert out_path.exists()

    def test_invalid_definition(self, app, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("engine: {name: oracle}\nvpc: {vpc_id: vpc-1}\n")
        result = runner.invoke(app, ["synth", str(path)])
        assert result.exit_code == 1
        assert "Invalid cluster definition" in _strip(result.output)

    def test_missing_file(self, app, tmp_path):
        result = runner.invoke(app, ["synth", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "not found" in _strip(result.output)


# ── deploy ───────────────────────────────────────────────────────────


class TestDeploy:
    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_deploy_blocks_and_reports_endpoint(self, mock_cls, app, config_file):
        mgr = _mock_stack_manager()
        mock_cls.return_value = mgr

        result = runner.invoke(app, ["deploy", str(config_file)])

        assert result.exit_code == 0, result.output
        out = _strip(result.output)
        assert "aurora-serverless-database" in out
        assert "db.cluster-x.rds.amazonaws.com:5432" in out
        assert _OUTPUTS["DatabaseSecretArn"] in out
        assert mgr.create_stack.call_args.args[0] == "aurora-serverless-database"

    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_background(self, mock_cls, app, config_file):
        mgr = _mock_stack_manager()
        mock_cls.return_value = mgr

        result = runner.invoke(
            app, ["deploy", str(config_file), "--background", "--stack-name", "mine"]
        )

        assert result.exit_code == 0, result.output
        assert "initiated" in _strip(result.output)
        assert mgr.initiate_create_stack.call_args.args[0] == "mine"
        mgr.create_stack.assert_not_called()

    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_refuses_invalid_config(self, mock_cls, app, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(
            "engine: {name: aurora}\nvpc: {vpc_id: vpc-1, subnets: [{subnet_id: s}]}\n"
        )
        result = runner.invoke(app, ["deploy", str(path)])
        assert result.exit_code == 1
        mock_cls.assert_not_called()

    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_failure(self, mock_cls, app, config_file):
        mgr = _mock_stack_manager()
        mgr.create_stack.side_effect = RuntimeError("Stack ended in ROLLBACK_COMPLETE")
        mock_cls.return_value = mgr

        result = runner.invoke(app, ["deploy", str(config_file)])

        assert result.exit_code == 1
        assert "ROLLBACK_COMPLETE" in _strip(result.output)


# ── status / delete / list ───────────────────────────────────────────


class TestStatus:
    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_status(self, mock_cls, app):
        mock_cls.return_value = _mock_stack_manager()
        result = runner.invoke(app, ["status", "aurora-serverless-database"])
        assert result.exit_code == 0
        out = _strip(result.output)
        assert "CREATE_COMPLETE" in out
        assert "DatabaseClusterEndpointAddress" in out

    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_status_json(self, mock_cls, app):
        mock_cls.return_value = _mock_stack_manager()
        result = runner.invoke(app, ["status", "aurora-serverless-database", "--json"])
        assert result.exit_code == 0
        assert json.loads(_strip(result.output))["status"] == "CREATE_COMPLETE"

    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_status_missing_stack(self, mock_cls, app):
        mgr = _mock_stack_manager()
        mgr.get_stack_status.side_effect = RuntimeError("Stack nope not found.")
        mock_cls.return_value = mgr
        result = runner.invoke(app, ["status", "nope"])
        assert result.exit_code == 1
        assert "not found" in _strip(result.output)

    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_region_from_environment(self, mock_cls, app, monkeypatch):
        monkeypatch.setenv("AURORA_SERVERLESS_REGION", "eu-central-1")
        mock_cls.return_value = _mock_stack_manager()
        runner.invoke(app, ["status", "s"])
        mock_cls.assert_called_once_with(region="eu-central-1")


class TestDelete:
    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_force_delete(self, mock_cls, app):
        mgr = _mock_stack_manager()
        mock_cls.return_value = mgr
        result = runner.invoke(app, ["delete", "aurora-serverless-database", "--force"])
        assert result.exit_code == 0
        assert "deleted" in _strip(result.output)
        mgr.delete_stack.assert_called_once_with("aurora-serverless-database")

    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_cancelled_by_prompt(self, mock_cls, app):
        result = runner.invoke(app, ["delete", "aurora-serverless-database"], input="n\n")
        assert result.exit_code == 0
        assert "Cancelled" in _strip(result.output)
        mock_cls.assert_not_called()


class TestList:
    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_list_table(self, mock_cls, app):
        mock_cls.return_value = _mock_stack_manager()
        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        out = _strip(result.output)
        assert "aurora-serverless-database" in out
        assert "db.cluster-x.rds.amazonaws.com" in out

    @patch("aurora_serverless.cli.commands.ServerlessStackManager")
    def test_list_empty(self, mock_cls, app):
        mgr = _mock_stack_manager()
        mgr.detect_existing_resources.return_value = {}
        mock_cls.return_value = mgr
        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "No aurora-serverless stacks" in _strip(result.output)


class TestEngines:
    def test_engines_table(self, app):
        result = runner.invoke(app, ["engines"])
        assert result.exit_code == 0
        out = _strip(result.output)
        assert "aurora-postgresql" in out
        assert "SecretsManagerRDSPostgreSQLRotationSingleUser" in out
